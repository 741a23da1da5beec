# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


import re
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from greenlight.services.passwords import MAX_PASSWORD_BYTES

EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+\/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

FIRST_FILM_YEAR = 1888


def _check_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_RE.match(v):
        raise ValueError("must be a valid email address")
    return v


# ── Users & tokens ───────────────────────────────────────────────────────────


class RegisterUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=8)

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def password_must_fit_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"must not be more than {MAX_PASSWORD_BYTES} bytes long")
        return v


class ActivateUserRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=64)


class AuthenticationRequest(BaseModel):
    """Login credentials, deliberately unconstrained.

    Length and format problems surface from AccountService.login as the same
    generic 401 as a wrong password, never as a field-level 422.
    """

    email: str = ""
    password: str = ""


class UserResponse(BaseModel):
    """Public fields of a user. No password hash, ever."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    name: str
    email: str
    activated: bool


class TokenResponse(BaseModel):
    """Plaintext token, shown exactly once."""

    token: str
    expiry: datetime


# ── Movies ───────────────────────────────────────────────────────────────────


class MovieSort(StrEnum):
    id = "id"
    title = "title"
    year = "year"
    runtime = "runtime"
    id_desc = "-id"
    title_desc = "-title"
    year_desc = "-year"
    runtime_desc = "-runtime"


def _check_genres(v: list[str]) -> list[str]:
    if len(set(v)) != len(v):
        raise ValueError("must not contain duplicate values")
    return v


def _check_year(v: int) -> int:
    if v > datetime.now().year:
        raise ValueError("must not be in the future")
    return v


class MovieCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    year: int = Field(..., ge=FIRST_FILM_YEAR)
    runtime: int = Field(..., gt=0, description="Runtime in minutes")
    genres: list[str] = Field(..., min_length=1, max_length=5)

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, v: int) -> int:
        return _check_year(v)

    @field_validator("genres")
    @classmethod
    def genres_unique(cls, v: list[str]) -> list[str]:
        return _check_genres(v)


class MovieUpdateRequest(BaseModel):
    """Partial update. Omitted fields keep their current value."""

    title: str | None = Field(None, min_length=1, max_length=500)
    year: int | None = Field(None, ge=FIRST_FILM_YEAR)
    runtime: int | None = Field(None, gt=0)
    genres: list[str] | None = Field(None, min_length=1, max_length=5)

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, v: int | None) -> int | None:
        return _check_year(v) if v is not None else v

    @field_validator("genres")
    @classmethod
    def genres_unique(cls, v: list[str] | None) -> list[str] | None:
        return _check_genres(v) if v is not None else v


class MovieResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    year: int
    runtime: int
    genres: list[str]
    version: int


class ListMetadata(BaseModel):
    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0

    @classmethod
    def calculate(cls, total: int, page: int, page_size: int) -> "ListMetadata":
        if total == 0:
            return cls()
        return cls(
            current_page=page,
            page_size=page_size,
            first_page=1,
            last_page=(total + page_size - 1) // page_size,
            total_records=total,
        )


class MovieListResponse(BaseModel):
    movies: list[MovieResponse]
    metadata: ListMetadata


# ── System ───────────────────────────────────────────────────────────────────


class SystemInfo(BaseModel):
    environment: str
    version: str


class HealthcheckResponse(BaseModel):
    status: str = "available"
    system_info: SystemInfo
