from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.otp import (
    OtpDeleteResponse,
    OtpGenerateRequest,
    OtpGenerateResponse,
    OtpValidateRequest,
    OtpValidateResponse,
    clean_identity,
)
from app.services.email import EmailSendError
from app.services.otp import OtpService, get_otp_service

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/generate", response_model=OtpGenerateResponse)
def generate_otp(
    payload: OtpGenerateRequest,
    service: OtpService = Depends(get_otp_service),
) -> OtpGenerateResponse:
    try:
        service.generate_and_send(payload.identity, payload.purpose)
    except EmailSendError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc
    return OtpGenerateResponse(
        message="OTP sent",
        expires_in_seconds=service.ttl_seconds,
    )


@router.post("/validate", response_model=OtpValidateResponse)
def validate_otp(
    payload: OtpValidateRequest,
    service: OtpService = Depends(get_otp_service),
) -> OtpValidateResponse:
    valid = service.validate(payload.identity, payload.code, payload.purpose)
    if not valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OTP",
        )
    return OtpValidateResponse(message="OTP verified", valid=True)


@router.delete("", response_model=OtpDeleteResponse)
def delete_otp(
    identity: str = Query(min_length=3, max_length=255),
    purpose: str = Query(min_length=1, max_length=32),
    service: OtpService = Depends(get_otp_service),
) -> OtpDeleteResponse:
    try:
        identity = clean_identity(identity)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    service.delete_otp(identity, purpose)
    return OtpDeleteResponse(message="OTP deleted")
