from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.database import session_scope
from app.models.otp import OtpEntry
from app.schemas.otp import OtpRecord


class OtpStore(Protocol):
    def save(self, record: OtpRecord) -> None: ...

    def find_by_identity_and_purpose(
        self, identity: str, purpose: str
    ) -> Optional[OtpRecord]: ...

    def delete(self, record: OtpRecord) -> bool: ...


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on DateTime(timezone=True) columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(entry: OtpEntry) -> OtpRecord:
    return OtpRecord(
        identity=entry.identity,
        purpose=entry.purpose,
        code=entry.code,
        issued_at=_as_utc(entry.issued_at),
        expires_at=_as_utc(entry.expires_at),
    )


class SqlAlchemyOtpStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def save(self, record: OtpRecord) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                OtpEntry(
                    identity=record.identity,
                    purpose=record.purpose,
                    code=record.code,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                )
            )

    def find_by_identity_and_purpose(
        self, identity: str, purpose: str
    ) -> Optional[OtpRecord]:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                select(OtpEntry).where(
                    OtpEntry.identity == identity,
                    OtpEntry.purpose == purpose,
                )
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                return None
            return _to_record(entry)

    def delete(self, record: OtpRecord) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(OtpEntry).where(
                    OtpEntry.identity == record.identity,
                    OtpEntry.purpose == record.purpose,
                )
            )
            return result.rowcount > 0
