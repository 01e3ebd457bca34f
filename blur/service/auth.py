from __future__ import annotations

import asyncio
import hmac
import json
import secrets
import string
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from blur.config import Settings
from blur.logging import get_logger, redact_email
from blur.service.errors import (
    AccountInactive,
    CodeExpired,
    DuplicateEmail,
    DuplicateNickname,
    EmailNotVerified,
    ForbiddenError,
    InvalidCode,
    InvalidCredentials,
    InvalidToken,
    NotFoundError,
    TokenMismatch,
    ValidationError,
)
from blur.service.tokens import ACCESS, REFRESH, TokenIssuer, TokenPair
from blur.service.validation import (
    SignupData,
    validate_email,
    validate_nickname,
    validate_password,
    validate_signup,
)
from blur.storage.cache import KeyValueCache
from blur.storage.errors import ConstraintViolation
from blur.storage.models import Account, Role

logger = get_logger(__name__)

REFRESH_TOKEN_PREFIX = "refreshToken:"


class AccountStore(Protocol):
    def create_account(
        self,
        email: str,
        nickname: str,
        password_hash: str,
        *,
        role: Role = Role.BASIC,
    ) -> Account: ...

    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def get_account_by_nickname(self, nickname: str) -> Optional[Account]: ...

    def list_accounts(self, limit: int = 100) -> List[Account]: ...

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]: ...

    def update_role(self, account_id: str, role: Role) -> Optional[Account]: ...

    def verify_connection(self) -> None: ...

class Mailer(Protocol):
    def send_email_auth_code(self, to_email: str, code: str, *, ttl_seconds: int = 300) -> bool: ...

    def send_password_auth_code(
        self, to_email: str, code: str, *, ttl_seconds: int = 300
    ) -> bool: ...

class CodePurpose(str, Enum):
    """What a verification code proves, and where it lives in the cache."""

    EMAIL = "email"
    PASSWORD = "password"

    @property
    def code_prefix(self) -> str:
        return "emailauth:" if self is CodePurpose.EMAIL else "passwordAuth:"

    @property
    def marker_prefix(self) -> str:
        return "validEmail:" if self is CodePurpose.EMAIL else "validPasswordChange:"

@dataclass(frozen=True)
class CodeRecord:
    code: str
    purpose: str
    created_at: float
    expires_at: float

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> Optional["CodeRecord"]:
        try:
            data = json.loads(raw)
            return cls(
                code=str(data["code"]),
                purpose=str(data["purpose"]),
                created_at=float(data["created_at"]),
                expires_at=float(data["expires_at"]),
            )
        except (ValueError, TypeError, KeyError):
            return None

@dataclass(frozen=True)
class AuthContext:
    account_id: str
    role: Role

class AuthService:
    """Signup, login, token reissue and verification-code flows.

    Accounts live in the ``store``; refresh tokens, pending codes and the
    "address proven" markers live in the volatile ``cache``. Every public
    operation is a coroutine because cache I/O is async.
    """

    def __init__(
        self,
        store: AccountStore,
        cache: KeyValueCache,
        settings: Settings,
        *,
        mailer: Optional[Mailer] = None,
        issuer: Optional[TokenIssuer] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings
        self.mailer = mailer
        self._clock = clock
        self.issuer = issuer or TokenIssuer(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl_minutes=settings.access_token_ttl_minutes,
            refresh_ttl_minutes=settings.refresh_token_ttl_minutes,
            clock=clock,
        )
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self._dummy_hash: Optional[str] = None
        self.logger = logger

    def _now(self) -> float:
        return self._clock()

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _verify_hash(self, password_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            self.logger.warning("password_hash_unverifiable")
            return False

    def _burn_verification(self, password: str) -> None:
        """Spend one argon2 verification so unknown emails cost as much as known ones."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hash_password(secrets.token_urlsafe(16))
        self._verify_hash(self._dummy_hash, password)

    async def create_account(self, signup: SignupData) -> bool:
        result = validate_signup(signup)
        if not result.ok or result.value is None:
            raise ValidationError("invalid signup request", detail=result.details())
        data = result.value

        marker_key = CodePurpose.EMAIL.marker_prefix + data.email
        if self.settings.require_email_verification:
            if not await self.cache.get(marker_key):
                raise EmailNotVerified("email address has not been verified")

        if self.store.get_account_by_email(data.email):
            raise DuplicateEmail("email already registered")
        if self.store.get_account_by_nickname(data.nickname):
            raise DuplicateNickname("nickname already in use")

        try:
            account = self.store.create_account(
                data.email,
                data.nickname,
                self._hash_password(data.password),
                role=Role.BASIC,
            )
        except ConstraintViolation as exc:
            # Lost a race with a concurrent signup for the same email or nickname
            if exc.field == "nickname":
                raise DuplicateNickname("nickname already in use") from exc
            raise DuplicateEmail("email already registered") from exc

        if self.settings.require_email_verification:
            await self.cache.delete(marker_key)
        self.logger.info("account_created", account_id=account.id)
        return True

    async def login(self, email: str, password: str) -> TokenPair:
        normalized = validate_email(email)
        account = (
            self.store.get_account_by_email(normalized.value)
            if normalized.ok and normalized.value
            else None
        )
        if not account:
            self._burn_verification(password or "")
            self.logger.info("login_failed", reason="unknown_account")
            raise InvalidCredentials("invalid email or password")
        if not self._verify_hash(account.password_hash, password or ""):
            self.logger.info("login_failed", account_id=account.id, reason="bad_password")
            raise InvalidCredentials("invalid email or password")
        if not account.is_active:
            self.logger.info("login_rejected_inactive", account_id=account.id)
            raise AccountInactive("account is inactive")

        if self._pwd_hasher.check_needs_rehash(account.password_hash):
            self.store.update_password(account.id, self._hash_password(password))

        pair = await self._issue_pair(account)
        self.logger.info("login_succeeded", account_id=account.id)
        return pair

    async def _issue_pair(self, account: Account) -> TokenPair:
        pair = self.issuer.issue_pair(account)
        await self.cache.put(
            REFRESH_TOKEN_PREFIX + account.id,
            pair.refresh_token,
            self.issuer.refresh_ttl_seconds,
        )
        return pair

    async def reissue_token(self, refresh_token: str) -> TokenPair:
        claims = self.issuer.decode(refresh_token, REFRESH)
        account_id = str(claims["sub"])
        account = self.store.get_account(account_id)
        if not account or not account.is_active:
            raise InvalidToken("account is no longer valid")

        stored = await self.cache.get(REFRESH_TOKEN_PREFIX + account_id)
        if not stored or not hmac.compare_digest(stored, refresh_token):
            self.logger.warning("refresh_token_mismatch", account_id=account_id)
            raise TokenMismatch("refresh token is no longer current")

        pair = await self._issue_pair(account)
        self.logger.info("token_reissued", account_id=account_id)
        return pair

    async def logout(self, account_id: str) -> bool:
        await self.cache.delete(REFRESH_TOKEN_PREFIX + account_id)
        self.logger.info("logout", account_id=account_id)
        return True

    async def check_nickname_availability(self, nickname: str) -> bool:
        result = validate_nickname(nickname)
        if not result.ok or result.value is None:
            raise ValidationError("invalid nickname", detail=result.details())
        return self.store.get_account_by_nickname(result.value) is None

    def _code_ttl(self, purpose: CodePurpose) -> int:
        if purpose is CodePurpose.EMAIL:
            return self.settings.email_auth_code_ttl_seconds
        return self.settings.password_auth_code_ttl_seconds

    def _marker_ttl(self, purpose: CodePurpose) -> int:
        if purpose is CodePurpose.EMAIL:
            return self.settings.email_verified_ttl_minutes * 60
        return self.settings.password_change_ttl_minutes * 60

    def _generate_code(self) -> str:
        return "".join(
            secrets.choice(string.digits) for _ in range(self.settings.auth_code_length)
        )

    @staticmethod
    def _require_email(email: str) -> str:
        result = validate_email(email)
        if not result.ok or result.value is None:
            raise ValidationError("invalid email address", detail=result.details())
        return result.value

    async def _store_code(self, purpose: CodePurpose, email: str) -> str:
        now = self._now()
        ttl = self._code_ttl(purpose)
        record = CodeRecord(
            code=self._generate_code(),
            purpose=purpose.value,
            created_at=now,
            expires_at=now + ttl,
        )
        # Keep the record past expiry so a late attempt reads as expired, not unknown
        await self.cache.put(
            purpose.code_prefix + email,
            record.to_json(),
            ttl + self.settings.auth_code_retention_seconds,
        )
        return record.code

    async def _deliver(self, purpose: CodePurpose, email: str, code: str) -> None:
        if self.mailer is None:
            self.logger.warning("mailer_not_configured", purpose=purpose.value)
            return
        send = (
            self.mailer.send_email_auth_code
            if purpose is CodePurpose.EMAIL
            else self.mailer.send_password_auth_code
        )
        try:
            sent = await asyncio.to_thread(
                send, email, code, ttl_seconds=self._code_ttl(purpose)
            )
        except Exception as exc:
            self.logger.error(
                "verification_delivery_failed",
                purpose=purpose.value,
                to=redact_email(email),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        if not sent:
            self.logger.warning(
                "verification_delivery_failed", purpose=purpose.value, to=redact_email(email)
            )

    async def _consume_code(self, purpose: CodePurpose, email: str, code: str) -> None:
        key = purpose.code_prefix + email
        raw = await self.cache.get(key)
        record = CodeRecord.from_json(raw) if raw else None
        if record is None or record.purpose != purpose.value:
            raise InvalidCode("verification code is invalid")
        if self._now() >= record.expires_at:
            await self.cache.delete(key)
            raise CodeExpired("verification code has expired")
        if not isinstance(code, str) or not hmac.compare_digest(
            record.code.encode(), code.strip().encode()
        ):
            raise InvalidCode("verification code is invalid")
        await self.cache.delete(key)
        await self.cache.put(
            purpose.marker_prefix + email, "true", self._marker_ttl(purpose)
        )

    async def create_email_auth_code(self, email: str) -> bool:
        normalized = self._require_email(email)
        code = await self._store_code(CodePurpose.EMAIL, normalized)
        await self._deliver(CodePurpose.EMAIL, normalized, code)
        self.logger.info("verification_issued", purpose=CodePurpose.EMAIL.value)
        return True

    async def validate_email_auth_code(self, email: str, code: str) -> bool:
        normalized = self._require_email(email)
        await self._consume_code(CodePurpose.EMAIL, normalized, code)
        self.logger.info("email_verified", to=redact_email(normalized))
        return True

    async def create_password_auth_code(self, email: str) -> bool:
        normalized = self._require_email(email)
        # Same answer whether or not the address is registered
        if self.store.get_account_by_email(normalized) is None:
            self.logger.info("password_reset_unknown_account")
            return True
        code = await self._store_code(CodePurpose.PASSWORD, normalized)
        await self._deliver(CodePurpose.PASSWORD, normalized, code)
        self.logger.info("verification_issued", purpose=CodePurpose.PASSWORD.value)
        return True

    async def validate_password_auth_code(self, email: str, code: str) -> bool:
        normalized = self._require_email(email)
        await self._consume_code(CodePurpose.PASSWORD, normalized, code)
        return True

    async def reset_password(self, email: str, new_password: str) -> bool:
        normalized = self._require_email(email)
        checked = validate_password(new_password, field_name="new_password")
        if not checked.ok:
            raise ValidationError("invalid password", detail=checked.details())
        marker_key = CodePurpose.PASSWORD.marker_prefix + normalized
        if not await self.cache.get(marker_key):
            raise InvalidCode("password change has not been authorized")
        account = self.store.get_account_by_email(normalized)
        if account is None:
            await self.cache.delete(marker_key)
            raise InvalidCode("password change has not been authorized")

        self.store.update_password(account.id, self._hash_password(new_password))
        await self.cache.delete(marker_key)
        await self.cache.delete(REFRESH_TOKEN_PREFIX + account.id)
        self.logger.info("password_reset_completed", account_id=account.id)
        return True

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    async def authenticate(
        self, authorization: Optional[str], *, required_role: Optional[Role] = None
    ) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise InvalidToken("missing bearer token")
        claims = self.issuer.decode(token, ACCESS)
        account = self.store.get_account(str(claims["sub"]))
        if not account or not account.is_active:
            raise InvalidToken("account is no longer valid")
        # A role change makes older tokens stale
        if claims.get("role") != account.role.value:
            raise InvalidToken("token role is out of date")
        if required_role is not None and not account.role.allows(required_role):
            raise ForbiddenError("insufficient role")
        return AuthContext(account_id=account.id, role=account.role)

    async def get_account(self, account_id: str) -> Account:
        account = self.store.get_account(account_id)
        if not account:
            raise NotFoundError("account not found")
        return account

    async def set_account_role(self, account_id: str, role: Role) -> Account:
        account = self.store.update_role(account_id, role)
        if not account:
            raise NotFoundError("account not found")
        await self.cache.delete(REFRESH_TOKEN_PREFIX + account_id)
        self.logger.info("account_role_changed", account_id=account_id, role=role.value)
        return account
