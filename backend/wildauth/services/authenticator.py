"""Credential flows: login, registration, password reset, token refresh.

All identity failures are reported with generic errors. The specific
reason (unknown account, inactive account, wrong password, replayed
refresh token) is only logged.
"""

from dataclasses import replace
from datetime import timedelta

import structlog

from wildauth.core.clock import Clock, utc_now
from wildauth.core.email import EmailNotifier
from wildauth.core.errors import (
    DeliveryFailedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    TokenInvalidError,
    UsernameTakenError,
    ValidationError,
)
from wildauth.core.passwords import (
    SecretHasher,
    utf8_bytes,
    validate_password_strength,
)
from wildauth.core.tokens import TokenClaims, TokenIssuer
from wildauth.schemas.credentials import (
    CodePurpose,
    LoginResult,
    NewPrincipal,
    Principal,
    TokenPair,
)
from wildauth.services.reset_tokens import ResetTokenStore
from wildauth.services.verification_codes import (
    VerificationCodeStore,
    normalize_email,
)
from wildauth.stores.base import RateLimiter, RevocationList, UserDirectory

logger = structlog.get_logger()

RESET_LINK_PURPOSE = "reset_link"
DEFAULT_RESET_REQUEST_COOLDOWN = timedelta(seconds=60)

_USERNAME_MIN_LENGTH = 3
_USERNAME_MAX_LENGTH = 50
_DISPLAY_NAME_MAX_LENGTH = 100


def is_email_identifier(identifier: str) -> bool:
    """Whether a login identifier should be looked up as an email address.

    Usernames cannot contain "@", so any identifier with one is an email.
    """
    return "@" in identifier


def validate_username(username: str) -> str:
    """Check a new username and return it stripped.

    Raises:
        ValidationError: Wrong length, contains "@" or whitespace, or is
            not valid Unicode text.
    """
    candidate = username.strip()
    if utf8_bytes(candidate) is None:
        raise ValidationError("Username must be valid Unicode text")
    if not _USERNAME_MIN_LENGTH <= len(candidate) <= _USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must be {_USERNAME_MIN_LENGTH}-{_USERNAME_MAX_LENGTH} characters"
        )
    if is_email_identifier(candidate) or any(ch.isspace() for ch in candidate):
        raise ValidationError("Username must not contain '@' or whitespace")
    return candidate


class CredentialAuthenticator:
    """Orchestrates the credential flows over the stores.

    Args:
        directory: Principal lookup and persistence.
        hasher: Password hashing.
        issuer: Access and refresh token signing.
        codes: Verification code lifecycle.
        reset_tokens: Reset token lifecycle.
        rate_limiter: Throttles reset-link emails per address.
        revocations: Revoked refresh token ids.
        notifier: Email delivery for reset links.
        clock: Time source.
        rotate_refresh_tokens: Revoke a refresh token when it is used.
        require_email_verification: Registration needs a register code.
        reset_request_cooldown: Minimum time between two reset emails.
    """

    def __init__(
        self,
        *,
        directory: UserDirectory,
        hasher: SecretHasher,
        issuer: TokenIssuer,
        codes: VerificationCodeStore,
        reset_tokens: ResetTokenStore,
        rate_limiter: RateLimiter,
        revocations: RevocationList,
        notifier: EmailNotifier,
        clock: Clock = utc_now,
        rotate_refresh_tokens: bool = True,
        require_email_verification: bool = True,
        reset_request_cooldown: timedelta = DEFAULT_RESET_REQUEST_COOLDOWN,
    ) -> None:
        self._directory = directory
        self._hasher = hasher
        self._issuer = issuer
        self._codes = codes
        self._reset_tokens = reset_tokens
        self._rate_limiter = rate_limiter
        self._revocations = revocations
        self._notifier = notifier
        self._clock = clock
        self._rotate_refresh_tokens = rotate_refresh_tokens
        self._require_email_verification = require_email_verification
        self._reset_request_cooldown = reset_request_cooldown

    # =========================================================================
    # Login
    # =========================================================================

    async def login(self, identifier: str, password: str) -> LoginResult:
        """Authenticate by username or email and issue a token pair.

        Args:
            identifier: Username, or email address if it contains "@".
            password: Plain-text password.

        Returns:
            Access and refresh tokens plus the principal.

        Raises:
            InvalidCredentialsError: Unknown or inactive account, or wrong
                password. Indistinguishable to the caller.
        """
        identifier = identifier.strip()
        if not identifier or not password:
            raise InvalidCredentialsError()
        if utf8_bytes(identifier) is None:
            self._hasher.dummy_verify(password)
            logger.info("Login rejected", reason="unencodable_identifier")
            raise InvalidCredentialsError()

        if is_email_identifier(identifier):
            principal = await self._directory.find_by_email(identifier.lower())
        else:
            principal = await self._directory.find_by_username(identifier)

        if principal is None:
            self._hasher.dummy_verify(password)
            logger.info("Login rejected", reason="unknown_account")
            raise InvalidCredentialsError()

        if not principal.is_active:
            self._hasher.dummy_verify(password)
            logger.info(
                "Login rejected",
                reason="inactive_account",
                principal_id=principal.id,
                status=principal.status.value,
            )
            raise InvalidCredentialsError()

        if not self._hasher.verify(password, principal.password_hash):
            logger.info("Login rejected", reason="bad_password", principal_id=principal.id)
            raise InvalidCredentialsError()

        now = self._clock()
        await self._directory.update_last_login(principal.id, now)
        logger.info("Login succeeded", principal_id=principal.id)
        return LoginResult(
            tokens=self._issue_pair(principal),
            principal=replace(principal, last_login_at=now),
        )

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        display_name: str | None = None,
        verification_code: str | None = None,
    ) -> Principal:
        """Create an active account with role "user".

        When email verification is required, ``verification_code`` must be
        a live register code for the address. When it is optional and a
        code is given anyway, the code is still checked. The account is
        marked verified iff a code was consumed. If account creation loses
        a race with a concurrent registration, the consumed code is released
        so it can be used for a second attempt.

        Raises:
            ValidationError: Bad username, email or display name, or a
                missing code while verification is required.
            WeakPasswordError: Password fails the strength policy.
            UsernameTakenError: Username in use.
            EmailAlreadyRegisteredError: Email in use.
            InvalidOrExpiredCodeError: Code does not match a live one.
        """
        clean_username = validate_username(username)
        address = normalize_email(email)
        validate_password_strength(password)
        clean_display_name = (display_name or "").strip() or clean_username
        if utf8_bytes(clean_display_name) is None:
            raise ValidationError("Display name must be valid Unicode text")
        if len(clean_display_name) > _DISPLAY_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Display name must be at most {_DISPLAY_NAME_MAX_LENGTH} characters"
            )
        code = (verification_code or "").strip()
        if self._require_email_verification and not code:
            raise ValidationError("Verification code is required")

        if await self._directory.find_by_username(clean_username) is not None:
            logger.info("Registration rejected", reason="username_taken")
            raise UsernameTakenError()
        if await self._directory.find_by_email(address) is not None:
            logger.info("Registration rejected", reason="email_taken")
            raise EmailAlreadyRegisteredError()

        new = NewPrincipal(
            username=clean_username,
            email=address,
            password_hash=self._hasher.hash(password),
            display_name=clean_display_name,
            email_verified=bool(code),
        )
        if code:
            await self._codes.consume_code(address, code, CodePurpose.REGISTER)

        try:
            principal = await self._directory.create(new)
        except (UsernameTakenError, EmailAlreadyRegisteredError) as exc:
            # Lost a race with a concurrent registration; give the code back
            logger.info(
                "Registration rejected",
                reason="username_taken"
                if isinstance(exc, UsernameTakenError)
                else "email_taken",
            )
            if code:
                await self._codes.release_code(address, code, CodePurpose.REGISTER)
            raise
        logger.info("Account registered", principal_id=principal.id)
        return principal

    # =========================================================================
    # Password reset
    # =========================================================================

    async def request_password_reset(self, email: str) -> None:
        """Email a reset link if the address belongs to an active account.

        Returns normally for unknown addresses, inactive accounts and
        throttled requests so the response does not reveal which addresses
        have accounts.

        Raises:
            ValidationError: Malformed email.
            DeliveryFailedError: The account exists but the email was not
                accepted. The issued token stays valid.
        """
        address = normalize_email(email)

        principal = await self._directory.find_by_email(address)
        if principal is None or not principal.is_active:
            logger.info(
                "Password reset not sent",
                reason="unknown_account" if principal is None else "inactive_account",
            )
            return

        if not await self._rate_limiter.allow(
            address, RESET_LINK_PURPOSE, self._reset_request_cooldown
        ):
            logger.info(
                "Password reset not sent", reason="throttled", principal_id=principal.id
            )
            return

        token = await self._reset_tokens.issue_reset_token(principal.id)
        if not await self._notifier.send_reset_link(principal.email, token):
            logger.warning("Password reset email not delivered", principal_id=principal.id)
            raise DeliveryFailedError()
        logger.info("Password reset sent", principal_id=principal.id)

    async def confirm_reset(self, token: str, new_password: str) -> int:
        """Set a new password using a reset token.

        The strength policy is checked first, so a weak password does not
        spend the token.

        Args:
            token: Plaintext reset token.
            new_password: New plain-text password.

        Returns:
            The principal id whose password changed.

        Raises:
            WeakPasswordError: Listing every failed rule.
            TokenInvalidOrExpiredError: Token unknown, expired or used. The
                stored password is unchanged.
        """
        validate_password_strength(new_password)
        password_hash = self._hasher.hash(new_password)
        return await self._reset_tokens.redeem_reset_token(token, password_hash)

    # =========================================================================
    # Tokens
    # =========================================================================

    async def refresh_access_token(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new access token.

        With rotation on, the presented refresh token is revoked and a new
        one returned; presenting it again fails. With rotation off, the
        same refresh token is returned.

        Raises:
            TokenInvalidError: Bad signature, wrong token type, revoked or
                replayed token, or the principal is gone or inactive.
            TokenExpiredError: Refresh token past its expiry.
        """
        claims = self._issuer.verify_refresh_token(refresh_token)
        if await self._revocations.is_revoked(claims.token_id):
            logger.warning(
                "Refresh rejected", reason="revoked", principal_id=claims.principal_id
            )
            raise TokenInvalidError()

        principal = await self._directory.find_by_id(claims.principal_id)
        if principal is None or not principal.is_active:
            logger.info(
                "Refresh rejected",
                reason="inactive_account",
                principal_id=claims.principal_id,
            )
            raise TokenInvalidError()

        if not self._rotate_refresh_tokens:
            return TokenPair(
                access_token=self._access_token(principal),
                refresh_token=refresh_token,
                expires_in=self._access_expires_in(),
            )

        if not await self._revocations.revoke(claims.token_id, claims.expires_at):
            # Another request already rotated this token
            logger.warning(
                "Refresh rejected", reason="replayed", principal_id=principal.id
            )
            raise TokenInvalidError()
        return self._issue_pair(principal)

    async def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Revoking twice is not an error.

        Raises:
            TokenInvalidError: Not a valid refresh token.
            TokenExpiredError: Refresh token past its expiry.
        """
        claims: TokenClaims = self._issuer.verify_refresh_token(refresh_token)
        await self._revocations.revoke(claims.token_id, claims.expires_at)
        logger.info("Logged out", principal_id=claims.principal_id)

    def _access_token(self, principal: Principal) -> str:
        return self._issuer.issue_access_token(
            principal.id, principal.username, principal.role.value
        )

    def _access_expires_in(self) -> int:
        return int(self._issuer.access_ttl.total_seconds())

    def _issue_pair(self, principal: Principal) -> TokenPair:
        return TokenPair(
            access_token=self._access_token(principal),
            refresh_token=self._issuer.issue_refresh_token(
                principal.id, principal.username
            ),
            expires_in=self._access_expires_in(),
        )
