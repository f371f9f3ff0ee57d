"""Opaque single-use password reset tokens.

The plaintext token (256 bits, URL-safe) is only ever in the email link.
The ledger stores its SHA-256 digest, so a database leak does not yield
usable tokens. Several outstanding tokens per principal are allowed until
one of them is redeemed, which revokes the rest.
"""

import hashlib
import secrets
from datetime import timedelta

import structlog

from wildauth.core.clock import Clock, utc_now
from wildauth.core.errors import TokenInvalidOrExpiredError
from wildauth.core.passwords import utf8_bytes
from wildauth.stores.base import ResetTokenLedger

logger = structlog.get_logger()

DEFAULT_RESET_TOKEN_TTL = timedelta(minutes=30)

# 32 bytes of entropy, 43 URL-safe characters
_TOKEN_BYTES = 32


def hash_reset_token(token: str) -> str:
    """Return the hex SHA-256 digest stored in place of the token.

    Raises:
        TokenInvalidOrExpiredError: The token cannot be encoded as UTF-8, so
            it cannot be one this store issued.
    """
    encoded = utf8_bytes(token)
    if encoded is None:
        raise TokenInvalidOrExpiredError()
    return hashlib.sha256(encoded).hexdigest()


class ResetTokenStore:
    """Reset token lifecycle over a ResetTokenLedger."""

    def __init__(
        self,
        *,
        ledger: ResetTokenLedger,
        clock: Clock = utc_now,
        ttl: timedelta = DEFAULT_RESET_TOKEN_TTL,
    ) -> None:
        self._ledger = ledger
        self._clock = clock
        self._ttl = ttl

    async def issue_reset_token(self, principal_id: int) -> str:
        """Create a token for the principal.

        Args:
            principal_id: Account the token resets.

        Returns:
            The plaintext token, to be sent by email and nowhere else.
        """
        token = secrets.token_urlsafe(_TOKEN_BYTES)
        now = self._clock()
        await self._ledger.add(
            token_hash=hash_reset_token(token),
            principal_id=principal_id,
            expires_at=now + self._ttl,
            now=now,
        )
        logger.info("Reset token issued", principal_id=principal_id)
        return token

    async def consume_reset_token(self, token: str) -> int:
        """Spend a token without changing any password.

        Returns:
            The principal id the token belonged to.

        Raises:
            TokenInvalidOrExpiredError: Unknown, expired or already used.
        """
        principal_id = await self._ledger.claim(
            token_hash=self._digest(token), now=self._clock()
        )
        if principal_id is None:
            logger.info("Reset token rejected")
            raise TokenInvalidOrExpiredError()
        return principal_id

    async def redeem_reset_token(self, token: str, password_hash: str) -> int:
        """Spend a token and store a new password hash in one step.

        On success every other outstanding token of the principal is
        revoked. On failure the password is untouched.

        Args:
            token: Plaintext token from the reset link.
            password_hash: bcrypt hash of the new password.

        Returns:
            The principal id whose password changed.

        Raises:
            TokenInvalidOrExpiredError: Unknown, expired or already used.
        """
        principal_id = await self._ledger.claim_and_set_password(
            token_hash=self._digest(token),
            now=self._clock(),
            password_hash=password_hash,
        )
        if principal_id is None:
            logger.info("Reset token rejected")
            raise TokenInvalidOrExpiredError()
        logger.info("Password reset via token", principal_id=principal_id)
        return principal_id

    @staticmethod
    def _digest(token: str) -> str:
        if not isinstance(token, str) or not token.strip():
            raise TokenInvalidOrExpiredError()
        return hash_reset_token(token.strip())
