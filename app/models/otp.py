from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from app.database import Base
from app.services.codes import MAX_CODE_LENGTH


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    identity = Column(String(255), nullable=False)
    purpose = Column(String(32), nullable=False)
    code = Column(String(MAX_CODE_LENGTH), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("identity", "purpose", name="uq_otp_identity_purpose"),
        Index("ix_otp_expires_at", "expires_at"),
    )
