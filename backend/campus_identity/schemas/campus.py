from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CampusPayload(BaseModel):
    """Base for bodies sent by the campus API.

    The campus API sends null where it means "empty"; null fields fall back
    to their defaults instead of failing validation.
    """

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class CampusUser(CampusPayload):
    user_id: int = 0
    username: str = ""
    email: str = ""
    role: str = ""
    status: int = 0
    jabatan: Any = None


class CampusAuthResponse(CampusPayload):
    """Body returned by the campus `do-auth` endpoint."""

    result: bool = False
    error: str = ""
    success: str = ""
    user: CampusUser | None = None
    token: str = ""
    refresh_token: str = ""


class CampusLoginResult(BaseModel):
    token: str
    refresh_token: str = ""
    user: CampusUser | None = None


class StudentInfo(CampusPayload):
    """Entry of the campus `mahasiswa` directory listing."""

    dim_id: int = 0
    user_id: int = 0
    user_name: str = ""
    nim: str = ""
    nama: str = ""
    email: str = ""
    prodi_id: int = 0
    prodi_name: str = ""
    fakultas: str = ""
    angkatan: int = 0
    status: str = ""
    asrama: str = ""


class StudentDetail(CampusPayload):
    """Detailed student record from `get-student-by-nim`."""

    nim: str = ""
    nama: str = ""
    email: str = ""
    tempat_lahir: str = ""
    tgl_lahir: str = ""
    jenis_kelamin: str = ""
    alamat: str = ""
    hp: str = ""
    prodi: str = ""
    fakultas: str = ""
    sem: int = 0
    sem_ta: int = 0
    ta: str = ""
    tahun_masuk: int = 0
    kelas: str = ""
    dosen_wali: str = ""
    asrama: str = ""
    nama_ayah: str = ""
    nama_ibu: str = ""
    no_hp_ayah: str = ""
    no_hp_ibu: str = ""


class StudentComplete(BaseModel):
    basic_info: StudentInfo
    details: StudentDetail


class StudentListData(CampusPayload):
    mahasiswa: list[StudentInfo] = Field(default_factory=list)


class StudentListResponse(CampusPayload):
    result: str = ""
    data: StudentListData = Field(default_factory=StudentListData)


class StudentDetailResponse(CampusPayload):
    result: str = ""
    data: StudentDetail | None = None
