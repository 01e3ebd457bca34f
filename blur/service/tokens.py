from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from blur.logging import get_logger
from blur.service.errors import InvalidToken
from blur.storage.models import Account

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "bearer"

    def as_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "access_expires_at": self.access_expires_at.isoformat(),
            "refresh_expires_at": self.refresh_expires_at.isoformat(),
        }


class TokenIssuer:
    """Mints and verifies HS256 access/refresh tokens.

    The signing secret is supplied by the caller; there is no module-level key.
    Every token carries a fresh ``jti`` so two pairs minted for the same account
    in the same second never compare equal.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "blur",
        audience: str = "blur-clients",
        access_ttl_minutes: int = 30,
        refresh_ttl_minutes: int = 60 * 24 * 14,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.access_ttl_seconds = int(access_ttl_minutes) * 60
        self.refresh_ttl_seconds = int(refresh_ttl_minutes) * 60
        self._clock = clock

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def encode(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode(self, token: str, expected_type: str) -> dict[str, Any]:
        """Verify ``token`` and return its claims or raise ``InvalidToken``."""
        if not isinstance(token, str):
            raise InvalidToken("invalid token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidToken("malformed token") from None

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidToken("malformed token") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            raise InvalidToken("unsupported token algorithm")

        expected = self._sign(f"{header_b64}.{payload_b64}").encode("ascii")
        if not hmac.compare_digest(expected, sig_b64.encode("utf-8", "surrogatepass")):
            raise InvalidToken("invalid token signature")
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidToken("malformed token") from None
        if not isinstance(payload, dict):
            raise InvalidToken("malformed token")

        if payload.get("iss") != self.issuer:
            raise InvalidToken("invalid token issuer")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise InvalidToken("invalid token audience")
        if payload.get("token_type") != expected_type:
            raise InvalidToken("unexpected token type")
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidToken("token missing expiry") from None
        if exp_ts <= self._clock():
            raise InvalidToken("token expired")
        if not payload.get("sub"):
            raise InvalidToken("token missing subject")
        return payload

    def _claims(self, account: Account, token_type: str, now: int, ttl: int) -> dict[str, Any]:
        return {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": account.id,
            "role": account.role.value,
            "token_type": token_type,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + ttl,
        }

    def issue_pair(self, account: Account) -> TokenPair:
        now = int(self._clock())
        access = self._claims(account, ACCESS, now, self.access_ttl_seconds)
        refresh = self._claims(account, REFRESH, now, self.refresh_ttl_seconds)
        return TokenPair(
            access_token=self.encode(access),
            refresh_token=self.encode(refresh),
            access_expires_at=datetime.fromtimestamp(access["exp"], tz=timezone.utc),
            refresh_expires_at=datetime.fromtimestamp(refresh["exp"], tz=timezone.utc),
        )
