from datetime import datetime, timedelta, timezone

import pytest

from campus_identity.utils.campus_tokens import (
    parse_numeric_id,
    token_expiry,
    validate_campus_token,
)
from campus_identity.utils.tokens import ExpiredTokenError, InvalidTokenError


class TestParseNumericId:
    @pytest.mark.parametrize("value", [42, 42.0, "42", " 42 "])
    def test_accepts_numeric_forms(self, value):
        assert parse_numeric_id(value) == 42

    @pytest.mark.parametrize("value", [0, -3, "0", "4a2", "", 4.5, True, None, ["42"], "٤٢"])
    def test_rejects_everything_else(self, value):
        with pytest.raises(InvalidTokenError):
            parse_numeric_id(value)


class TestValidateCampusToken:
    def test_numeric_uid(self, campus_token_factory):
        assert validate_campus_token(campus_token_factory(42)) == 42

    def test_string_uid(self, campus_token_factory):
        assert validate_campus_token(campus_token_factory("42")) == 42

    def test_signature_is_not_checked(self, campus_token_factory):
        token = campus_token_factory(7)
        header, payload, _ = token.split(".")
        assert validate_campus_token(f"{header}.{payload}.bm90LWEtc2lnbmF0dXJl") == 7

    def test_expired(self, campus_token_factory):
        token = campus_token_factory(42, expires_in=timedelta(seconds=-5))
        with pytest.raises(ExpiredTokenError):
            validate_campus_token(token)

    def test_no_exp_is_accepted(self, campus_token_factory):
        assert validate_campus_token(campus_token_factory(42, expires_in=None)) == 42

    def test_missing_uid(self, campus_token_factory):
        token = campus_token_factory(None)
        with pytest.raises(InvalidTokenError):
            validate_campus_token(token)

    def test_non_numeric_uid(self, campus_token_factory):
        with pytest.raises(InvalidTokenError):
            validate_campus_token(campus_token_factory("abc"))

    def test_undecodable(self):
        with pytest.raises(InvalidTokenError):
            validate_campus_token("definitely.not.a-jwt")


class TestTokenExpiry:
    def test_reads_exp_claim(self, campus_token_factory):
        token = campus_token_factory(1, expires_in=timedelta(minutes=10))
        expiry = token_expiry(token, timedelta(minutes=30))
        remaining = expiry - datetime.now(timezone.utc)
        assert timedelta(minutes=9) < remaining <= timedelta(minutes=10)

    def test_falls_back_to_default_lifetime(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert token_expiry("opaque-token", timedelta(minutes=30), now=now) == now + timedelta(
            minutes=30
        )

    def test_falls_back_without_exp(self, campus_token_factory):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        token = campus_token_factory(1, expires_in=None)
        assert token_expiry(token, timedelta(minutes=5), now=now) == now + timedelta(minutes=5)
