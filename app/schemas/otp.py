from dataclasses import dataclass
from datetime import datetime
import re

from pydantic import BaseModel, Field, field_validator

_ADDRESS_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def clean_identity(value: str) -> str:
    cleaned = value.strip()
    if not _ADDRESS_RE.fullmatch(cleaned):
        raise ValueError("Identity must be a single email address")
    return cleaned


class OtpGenerateRequest(BaseModel):
    identity: str = Field(min_length=3, max_length=255)
    purpose: str = Field(min_length=1, max_length=32)

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        return clean_identity(value)


class OtpGenerateResponse(BaseModel):
    message: str
    expires_in_seconds: int


class OtpValidateRequest(BaseModel):
    identity: str = Field(min_length=3, max_length=255)
    purpose: str = Field(min_length=1, max_length=32)
    # Length is not pinned to the code width; a wrong-length code still
    # consumes the stored record.
    code: str = Field(min_length=1, max_length=32)

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        return clean_identity(value)


class OtpValidateResponse(BaseModel):
    message: str
    valid: bool


class OtpDeleteResponse(BaseModel):
    message: str


@dataclass(frozen=True)
class OtpRecord:
    identity: str
    purpose: str
    code: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now
