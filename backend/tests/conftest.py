import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-for-campus-identity"
os.environ["CAMPUS_USERNAME"] = "svc-account"
os.environ["CAMPUS_PASSWORD"] = "svc-password"

import asyncio
import re
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campus_identity.database import Base, get_db
from campus_identity.main import app
from campus_identity.models import User, UserType
from campus_identity.schemas.auth import TokenSubject
from campus_identity.services.campus_credentials import CampusCredentialManager
from campus_identity.services.campus_service import CampusService, get_campus_service
from campus_identity.utils.passwords import hash_password
from campus_identity.utils.tokens import issue_access_token

# In-memory SQLite unless a real database is provided
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")

CAMPUS_API_BASE_URL = "https://campus.test/api"
CAMPUS_AUTH_URL = "https://campus.test/api/jwt-api/do-auth"
TEST_PASSWORD = "correct-password"

SERVICE_ACCOUNT_UID = 1
STUDENT_UID = 42
STUDENT_NIM = "11S20001"

STUDENT_INFO = {
    "dim_id": 900,
    "user_id": STUDENT_UID,
    "user_name": "ifs20001",
    "nim": STUDENT_NIM,
    "nama": "Rina Simanjuntak",
    "email": "ifs20001@students.del.ac.id",
    "prodi_id": 3,
    "prodi_name": "S1 Informatika",
    "fakultas": "Fakultas Informatika dan Teknik Elektro",
    "angkatan": 2020,
    "status": "Aktif",
    "asrama": "Asrama Pniel",
}

STUDENT_DETAIL = {
    "nim": STUDENT_NIM,
    "nama": "Rina Simanjuntak",
    "email": "ifs20001@students.del.ac.id",
    "tempat_lahir": "Balige",
    "tgl_lahir": "2002-04-11",
    "jenis_kelamin": "P",
    "prodi": "S1 Informatika",
    "fakultas": "Fakultas Informatika dan Teknik Elektro",
    "sem": 7,
    "ta": "2023/2024",
    "tahun_masuk": 2020,
    "kelas": "12IF1",
    "dosen_wali": "Dr. Arnaldo Sinaga",
}


def make_campus_token(uid, expires_in: timedelta | None = timedelta(hours=1), **claims) -> str:
    """Token shaped like the ones the campus system issues. Signed with a key we never check."""
    payload = {"uid": uid, **claims}
    if expires_in is not None:
        payload["exp"] = int((datetime.now(timezone.utc) + expires_in).timestamp())
    return jwt.encode(payload, "campus-signing-key-unknown-to-us", algorithm="HS256")


MULTIPART_FIELD = re.compile(rb'name="([^"]+)"\r\n\r\n(.*?)\r\n--', re.DOTALL)


def multipart_fields(body: bytes) -> dict[str, str]:
    return {name.decode(): value.decode() for name, value in MULTIPART_FIELD.findall(body)}


class FakeCampusSystem:
    """In-process campus information system served through httpx.MockTransport."""

    def __init__(self):
        self.accounts = {
            "svc-account": ("svc-password", SERVICE_ACCOUNT_UID),
            "ifs20001": ("student-pass", STUDENT_UID),
        }
        self.students = {STUDENT_UID: STUDENT_INFO}
        self.details = {STUDENT_NIM: STUDENT_DETAIL}
        self.token_lifetime: timedelta | None = timedelta(hours=1)
        self.login_status = 200
        self.login_delay = 0.0
        self.reject_all = False
        self.login_calls = 0
        self.api_calls = 0
        self.issued: list[str] = []
        self.login_content_types: list[str] = []
        # Send null instead of empty values, as the live campus API sometimes does
        self.null_fields = False
        self.revoked: set[str] = set()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == CAMPUS_AUTH_URL:
            return await self._login(request)
        return self._api(request)

    async def _login(self, request: httpx.Request) -> httpx.Response:
        self.login_calls += 1
        if self.login_delay:
            await asyncio.sleep(self.login_delay)
        if self.login_status != 200:
            return httpx.Response(self.login_status, text="Internal Server Error")

        self.login_content_types.append(request.headers.get("content-type", ""))
        form = multipart_fields(request.content)
        username = form.get("username", "")
        password = form.get("password", "")
        account = self.accounts.get(username)
        if account is None or account[0] != password:
            return httpx.Response(
                200,
                json={
                    "result": False,
                    "error": "Username atau password salah",
                    "success": "",
                    "user": None,
                    "token": "",
                    "refresh_token": "",
                },
            )

        uid = account[1]
        token = make_campus_token(uid, expires_in=self.token_lifetime, jti=str(self.login_calls))
        self.issued.append(token)
        body = {
            "result": True,
            "error": "",
            "success": "Login berhasil",
            "user": {
                "user_id": uid,
                "username": username,
                "email": f"{username}@del.ac.id",
                "role": "Mahasiswa",
                "status": 1,
                "jabatan": [],
            },
            "token": token,
            "refresh_token": f"refresh-{self.login_calls}",
        }
        if self.null_fields:
            body.update(error=None, success=None, refresh_token=None)
            body["user"].update(email=None, status=None, jabatan=None)
        return httpx.Response(200, json=body)

    def _api(self, request: httpx.Request) -> httpx.Response:
        self.api_calls += 1
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if self.reject_all or token not in self.issued or token in self.revoked:
            return httpx.Response(401, json={"message": "Unauthorized"})

        path = request.url.path
        if path.endswith("/library-api/mahasiswa"):
            uid = int(request.url.params["userid"])
            found = [self.students[uid]] if uid in self.students else []
            if self.null_fields:
                found = [{**s, "prodi_id": None, "angkatan": None, "asrama": None} for s in found]
            return httpx.Response(200, json={"result": "Ok", "data": {"mahasiswa": found}})
        if path.endswith("/library-api/get-student-by-nim"):
            nim = request.url.params["nim"]
            if nim not in self.details:
                return httpx.Response(404, json={"result": "Not Found"})
            detail = self.details[nim]
            if self.null_fields:
                detail = {**detail, "alamat": None, "hp": None, "sem_ta": None}
            return httpx.Response(200, json={"result": "Ok", "data": detail})
        return httpx.Response(404, json={"result": "Not Found"})


@pytest.fixture
def fake_campus() -> FakeCampusSystem:
    return FakeCampusSystem()


@pytest_asyncio.fixture
async def campus_http(fake_campus: FakeCampusSystem) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=fake_campus.transport()) as http:
        yield http


@pytest.fixture
def credential_manager(campus_http: httpx.AsyncClient) -> CampusCredentialManager:
    return CampusCredentialManager(
        campus_http,
        auth_url=CAMPUS_AUTH_URL,
        username="svc-account",
        password="svc-password",
    )


@pytest.fixture
def campus_service(
    campus_http: httpx.AsyncClient, credential_manager: CampusCredentialManager
) -> CampusService:
    return CampusService(
        campus_http,
        credential_manager,
        base_url=CAMPUS_API_BASE_URL,
        auth_url=CAMPUS_AUTH_URL,
    )


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for each test."""
    options = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        options = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **options)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession, campus_service: CampusService
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database session and campus gateway overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_campus_service] = lambda: campus_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Student account with a linked campus identity."""
    user = User(
        id=42,
        first_name="Rina",
        last_name="Simanjuntak",
        email="ifs20001@students.del.ac.id",
        login_id=STUDENT_NIM,
        campus_user_id=STUDENT_UID,
        password_hash=hash_password(TEST_PASSWORD),
        user_type=UserType.student,
        is_active=True,
        verified=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    user = User(
        id=1,
        first_name="Administrator",
        email="admin@del.ac.id",
        password_hash=hash_password(TEST_PASSWORD),
        user_type=UserType.admin,
        is_active=True,
        verified=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


def subject_for(user: User) -> TokenSubject:
    return TokenSubject(
        user_id=user.id,
        email=user.email,
        first_name=user.first_name,
        middle_name=user.middle_name,
        last_name=user.last_name,
        user_type=str(user.user_type),
    )


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Create authorization headers for authenticated requests."""
    token, _ = issue_access_token(subject_for(test_user))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    token, _ = issue_access_token(subject_for(admin_user))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def campus_token_factory() -> Callable[..., str]:
    return make_campus_token


@pytest.fixture
def campus_headers() -> dict[str, str]:
    """Headers carrying a campus-issued token for the test student."""
    return {"Authorization": f"Bearer {make_campus_token(STUDENT_UID)}"}
