"""Issue and consume six-digit email verification codes.

Issuing a code for an (email, purpose) pair supersedes any unused code for
the same pair, so at most one code is live at a time. A code is consumed
exactly once; a wrong, expired, superseded or spent code all fail with the
same InvalidOrExpiredCodeError.

Order of checks in issue_code:
1. Input validation (no store is touched on bad input)
2. Per-(email, purpose) cooldown
3. Registration: email must not belong to an account
4. Supersede-and-insert
5. Email delivery, after the row is committed
"""

import secrets
from datetime import timedelta

import structlog
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from wildauth.core.clock import Clock, utc_now
from wildauth.core.email import EmailNotifier
from wildauth.core.errors import (
    DeliveryFailedError,
    EmailAlreadyRegisteredError,
    InvalidOrExpiredCodeError,
    RateLimitedError,
    ValidationError,
)
from wildauth.core.passwords import utf8_bytes
from wildauth.schemas.credentials import CodePurpose, IssuedCode
from wildauth.stores.base import CodeLedger, RateLimiter, UserDirectory

logger = structlog.get_logger()

CODE_LENGTH = 6
DEFAULT_CODE_TTL = timedelta(minutes=10)
DEFAULT_CODE_COOLDOWN = timedelta(seconds=60)

_email_adapter: TypeAdapter[str] = TypeAdapter(EmailStr)


def normalize_email(email: str) -> str:
    """Validate an email address and return it lower-cased.

    Raises:
        ValidationError: If the address is empty or malformed.
    """
    candidate = email.strip() if isinstance(email, str) else ""
    if not candidate:
        raise ValidationError("Email is required")
    if utf8_bytes(candidate) is None:
        raise ValidationError("Invalid email address")
    try:
        address = _email_adapter.validate_python(candidate)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid email address") from exc
    return address.lower()


def parse_purpose(purpose: CodePurpose | str) -> CodePurpose:
    """Coerce a purpose string to CodePurpose.

    Raises:
        ValidationError: If the purpose is unknown.
    """
    try:
        return CodePurpose(purpose)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in CodePurpose)
        raise ValidationError(
            f"Invalid verification code purpose. Expected one of: {allowed}"
        ) from exc


def generate_code() -> str:
    """Return a uniformly random six-digit code, zero-padded."""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def retry_after_seconds(remaining: timedelta) -> int:
    """Round a remaining cooldown up to whole seconds, at least 1."""
    whole = int(remaining.total_seconds())
    if remaining.total_seconds() > whole:
        whole += 1
    return max(whole, 1)


class VerificationCodeStore:
    """Verification code lifecycle over a CodeLedger.

    Args:
        ledger: Persistence for codes.
        rate_limiter: Cooldown per (email, purpose).
        directory: Account lookup for the registration check.
        notifier: Email delivery.
        clock: Time source.
        ttl: Code lifetime.
        cooldown: Minimum time between two codes for one (email, purpose).
    """

    def __init__(
        self,
        *,
        ledger: CodeLedger,
        rate_limiter: RateLimiter,
        directory: UserDirectory,
        notifier: EmailNotifier,
        clock: Clock = utc_now,
        ttl: timedelta = DEFAULT_CODE_TTL,
        cooldown: timedelta = DEFAULT_CODE_COOLDOWN,
    ) -> None:
        self._ledger = ledger
        self._rate_limiter = rate_limiter
        self._directory = directory
        self._notifier = notifier
        self._clock = clock
        self._ttl = ttl
        self._cooldown = cooldown

    async def issue_code(self, email: str, purpose: CodePurpose | str) -> IssuedCode:
        """Create a new code for (email, purpose) and email it.

        Args:
            email: Recipient address.
            purpose: What the code authorises.

        Returns:
            Acknowledgement with the normalised email and expiry.

        Raises:
            ValidationError: Malformed email or unknown purpose.
            RateLimitedError: A code for this pair was issued within the
                cooldown.
            EmailAlreadyRegisteredError: Registration code for an address
                that already has an account.
            DeliveryFailedError: The code was stored but the email was not
                accepted. The stored code stays valid.
        """
        address = normalize_email(email)
        code_purpose = parse_purpose(purpose)

        if not await self._rate_limiter.allow(
            address, code_purpose.value, self._cooldown
        ):
            remaining = await self._rate_limiter.retry_after(
                address, code_purpose.value, self._cooldown
            )
            logger.info("Verification code throttled", purpose=code_purpose.value)
            raise RateLimitedError(retry_after_seconds(remaining))

        if code_purpose is CodePurpose.REGISTER:
            if await self._directory.find_by_email(address) is not None:
                raise EmailAlreadyRegisteredError()

        code = generate_code()
        now = self._clock()
        expires_at = now + self._ttl
        await self._ledger.replace_unused(
            email=address,
            purpose=code_purpose.value,
            code=code,
            expires_at=expires_at,
            now=now,
        )

        if not await self._notifier.send_code(address, code, code_purpose):
            logger.warning(
                "Verification code email not delivered", purpose=code_purpose.value
            )
            raise DeliveryFailedError()

        logger.info("Verification code issued", purpose=code_purpose.value)
        return IssuedCode(email=address, purpose=code_purpose, expires_at=expires_at)

    async def consume_code(
        self, email: str, code: str, purpose: CodePurpose | str
    ) -> None:
        """Consume a live code.

        Args:
            email: Address the code was sent to.
            code: The six-digit code.
            purpose: Purpose the code was issued for.

        Raises:
            ValidationError: Malformed email or unknown purpose.
            InvalidOrExpiredCodeError: No live code matches. Also raised
                for every caller but one when several race on one code.
        """
        address = normalize_email(email)
        code_purpose = parse_purpose(purpose)
        candidate = code.strip() if isinstance(code, str) else ""
        if len(candidate) != CODE_LENGTH or not candidate.isdigit():
            logger.info("Verification code rejected", reason="malformed")
            raise InvalidOrExpiredCodeError()

        claimed = await self._ledger.claim(
            email=address,
            code=candidate,
            purpose=code_purpose.value,
            now=self._clock(),
        )
        if not claimed:
            logger.info(
                "Verification code rejected",
                reason="no_live_match",
                purpose=code_purpose.value,
            )
            raise InvalidOrExpiredCodeError()
        logger.info("Verification code consumed", purpose=code_purpose.value)

    async def release_code(
        self, email: str, code: str, purpose: CodePurpose | str
    ) -> bool:
        """Make a just-consumed code live again after the follow-up failed.

        The code keeps its original expiry. Nothing happens if a newer code
        was issued in the meantime.

        Returns:
            True if the code can be used again.
        """
        code_purpose = parse_purpose(purpose)
        released = await self._ledger.release(
            email=normalize_email(email),
            code=code.strip(),
            purpose=code_purpose.value,
        )
        logger.info(
            "Verification code released",
            purpose=code_purpose.value,
            released=released,
        )
        return released
