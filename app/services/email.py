from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from app.config import settings

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
REQUEST_TIMEOUT_SECONDS = 10


class EmailSendError(RuntimeError):
    pass


class Notifier(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


def build_otp_body(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your OTP is {code}.\n\n"
        f"It expires in {minutes} minute(s).\n\n"
        "If you did not request this code, you can ignore this email."
    )


def build_raw_message(sender: str, recipient: str, subject: str, body: str) -> str:
    for value in (sender, recipient, subject):
        if "\r" in value or "\n" in value:
            raise EmailSendError("Email header contains a line break")
    lines = [
        f"From: {sender}",
        f"To: {recipient}",
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        "Content-Type: text/plain; charset=utf-8",
        "",
        body,
    ]
    message = "\r\n".join(lines)
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


class ConsoleNotifier:
    def send(self, to_address: str, subject: str, body: str) -> None:
        LOGGER.warning("Email to=%s subject=%s body=%s", to_address, subject, body)


class GmailNotifier:
    def __init__(
        self,
        sender: str,
        token_file: Optional[Path] = None,
        credentials_file: Optional[Path] = None,
    ) -> None:
        root = Path(__file__).resolve().parents[2]
        self._sender = sender
        self._token_file = token_file or root / "credentials" / "token.json"
        self._credentials_file = (
            credentials_file or root / "credentials" / "credentials.json"
        )

    def send(self, to_address: str, subject: str, body: str) -> None:
        if not self._sender:
            raise EmailSendError("OTP email sender is not configured")

        raw_message = build_raw_message(self._sender, to_address, subject, body)
        token = self._access_token()
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=json.dumps({"raw": raw_message}).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=REQUEST_TIMEOUT_SECONDS) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error to=%s response=%s", to_address, error_body)
            raise EmailSendError("Failed to send OTP email") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Gmail API") from exc

    def _access_token(self) -> str:
        token_data = _load_json(self._token_file)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")

        client_id, client_secret = self._client_details(token_data)
        payload = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")
        request = Request(
            token_data.get("token_uri") or GOOGLE_TOKEN_ENDPOINT,
            data=payload,
            method="POST",
        )
        try:
            with urlopen(request, timeout=REQUEST_TIMEOUT_SECONDS) as response:
                data = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail token refresh error: %s", error_body)
            raise EmailSendError("Failed to refresh Gmail token") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Gmail token endpoint") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")
        expires_in = int(data.get("expires_in", 3600))

        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        self._token_file.write_text(json.dumps(token_data), encoding="utf-8")
        LOGGER.info("Refreshed Gmail access token, expires_in=%s", expires_in)
        return access_token

    def _client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret

        credentials = _load_json(self._credentials_file)
        installed = credentials.get("installed", {})
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise EmailSendError("Gmail client credentials are missing")
        return client_id, client_secret


def build_notifier() -> Notifier:
    backend = settings.otp_email_backend
    if backend == "console":
        return ConsoleNotifier()
    if backend == "gmail":
        return GmailNotifier(
            settings.otp_email_sender,
            token_file=Path(settings.gmail_token_file) if settings.gmail_token_file else None,
            credentials_file=(
                Path(settings.gmail_credentials_file)
                if settings.gmail_credentials_file
                else None
            ),
        )
    raise ValueError(f"Unknown OTP email backend: {backend!r}")


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
