from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Callable, Optional

from app.config import settings
from app.schemas.otp import OtpRecord
from app.services.codes import NumericCodeGenerator
from app.services.email import Notifier, build_notifier, build_otp_body
from app.services.locks import KeyedLocks
from app.services.store import OtpStore, SqlAlchemyOtpStore

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_identity(identity: str) -> str:
    cleaned = identity.strip()
    if "@" in cleaned:
        return cleaned.lower()
    return cleaned


def _codes_equal(stored: str, submitted: str) -> bool:
    return secrets.compare_digest(stored.encode("utf-8"), submitted.encode("utf-8"))


class OtpService:
    """Issues, delivers and checks single-use codes keyed by (identity, purpose).

    At most one record exists per key. Every validation attempt against a
    present record consumes it, whatever the outcome. Delivery failures
    propagate to the caller and leave the freshly stored record in place.
    """

    def __init__(
        self,
        store: OtpStore,
        notifier: Notifier,
        *,
        ttl_seconds: int,
        subject: str,
        code_generator: Callable[[], str],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._ttl_seconds = ttl_seconds
        self._subject = subject
        self._generate_code = code_generator
        self._clock = clock or _utcnow
        self._locks = KeyedLocks()

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def generate_and_send(self, identity: str, purpose: str) -> None:
        normalized = normalize_identity(identity)
        now = self._clock()
        record = OtpRecord(
            identity=normalized,
            purpose=purpose,
            code=self._generate_code(),
            issued_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )

        with self._locks.hold(normalized, purpose):
            self._delete_existing(normalized, purpose)
            self._store.save(record)
        LOGGER.info(
            "Issued OTP identity=%s purpose=%s expires_at=%s",
            normalized,
            purpose,
            record.expires_at.isoformat(),
        )

        self._notifier.send(
            normalized, self._subject, build_otp_body(record.code, self._ttl_seconds)
        )

    def validate(self, identity: str, code: str, purpose: str) -> bool:
        normalized = normalize_identity(identity)
        with self._locks.hold(normalized, purpose):
            record = self._store.find_by_identity_and_purpose(normalized, purpose)
            if record is None:
                LOGGER.info(
                    "OTP validation failed identity=%s purpose=%s reason=missing",
                    normalized,
                    purpose,
                )
                return False
            self._store.delete(record)

        is_expired = record.is_expired(self._clock())
        is_match = _codes_equal(record.code, code)
        if is_expired or not is_match:
            LOGGER.info(
                "OTP validation failed identity=%s purpose=%s reason=%s",
                normalized,
                purpose,
                "expired" if is_expired else "mismatch",
            )
            return False
        return True

    def delete_otp(self, identity: str, purpose: str) -> None:
        normalized = normalize_identity(identity)
        with self._locks.hold(normalized, purpose):
            self._delete_existing(normalized, purpose)

    def _delete_existing(self, identity: str, purpose: str) -> None:
        existing = self._store.find_by_identity_and_purpose(identity, purpose)
        if existing is not None:
            self._store.delete(existing)


def build_otp_service() -> OtpService:
    return OtpService(
        SqlAlchemyOtpStore(),
        build_notifier(),
        ttl_seconds=settings.otp_ttl_seconds,
        subject=settings.otp_email_subject,
        code_generator=NumericCodeGenerator(settings.otp_length),
    )


otp_service = build_otp_service()


def get_otp_service() -> OtpService:
    return otp_service
