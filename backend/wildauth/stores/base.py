"""Abstract interfaces for credential state.

Every store is shared mutable state reached from concurrent requests.
Implementations must make each state transition atomic:

- MemoryXxx (``wildauth.stores.memory``): a ``threading.Lock`` around the
  transition, never held across an ``await``.
- SqlXxx (``wildauth.stores.sql``): one transaction per transition, with a
  conditional UPDATE or a unique constraint deciding the winner.

Methods are async in both families so services never care which one they
were given.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from wildauth.schemas.credentials import NewPrincipal, Principal


class UserDirectory(ABC):
    """Lookup and the narrow set of writes the credential flows need."""

    @abstractmethod
    async def find_by_username(self, username: str) -> Principal | None:
        """Return the principal with this exact username, if any."""

    @abstractmethod
    async def find_by_email(self, email: str) -> Principal | None:
        """Return the principal with this email (case-insensitive), if any."""

    @abstractmethod
    async def find_by_id(self, principal_id: int) -> Principal | None:
        """Return the principal with this id, if any."""

    @abstractmethod
    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        """Replace the stored hash. Returns False if the principal is gone."""

    @abstractmethod
    async def update_last_login(self, principal_id: int, logged_in_at: datetime) -> None:
        """Record a successful login."""

    @abstractmethod
    async def create(self, new: NewPrincipal) -> Principal:
        """Create an account.

        Raises:
            UsernameTakenError: Username already in use.
            EmailAlreadyRegisteredError: Email already in use.
        """


class RateLimiter(ABC):
    """Per-(subject, purpose) cooldown with compare-and-set semantics."""

    @abstractmethod
    async def allow(self, subject_key: str, purpose: str, cooldown: timedelta) -> bool:
        """Record an action unless one happened less than ``cooldown`` ago.

        Two concurrent callers for the same key never both get True inside
        one window. Exactly ``cooldown`` after the last allowed action, the
        next one is allowed.

        Returns:
            True if the action is allowed (and now recorded).
        """

    @abstractmethod
    async def retry_after(
        self, subject_key: str, purpose: str, cooldown: timedelta
    ) -> timedelta:
        """Time left until ``allow`` can succeed; zero if it can now."""


class CodeLedger(ABC):
    """Persistence for six-digit verification codes."""

    @abstractmethod
    async def replace_unused(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Supersede every unused code for (email, purpose) and store ``code``.

        Both steps happen atomically: no observer sees two unused codes for
        the pair, nor zero once this returns.
        """

    @abstractmethod
    async def claim(self, *, email: str, code: str, purpose: str, now: datetime) -> bool:
        """Mark the matching unused code with ``expires_at > now`` as used.

        Returns:
            True for exactly one of any number of concurrent callers.
        """

    @abstractmethod
    async def release(self, *, email: str, code: str, purpose: str) -> bool:
        """Undo a claim whose follow-up step failed.

        Only the newest code for (email, purpose) can be released, and only
        while no other code for the pair is unused.

        Returns:
            True if the code is live again.
        """


class ResetTokenLedger(ABC):
    """Persistence for hashed password reset tokens."""

    @abstractmethod
    async def add(
        self,
        *,
        token_hash: str,
        principal_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Store a new outstanding token."""

    @abstractmethod
    async def claim(self, *, token_hash: str, now: datetime) -> int | None:
        """Mark an unused, unexpired token as used.

        Returns:
            The owning principal id if this call won, None otherwise.
        """

    @abstractmethod
    async def claim_and_set_password(
        self, *, token_hash: str, now: datetime, password_hash: str
    ) -> int | None:
        """Claim the token, store the new hash and revoke sibling tokens.

        All or nothing: if the hash cannot be stored the claim is undone.

        Returns:
            The principal id whose password changed, or None if the token
            was not claimable.
        """

    @abstractmethod
    async def revoke_all_for_principal(self, *, principal_id: int, now: datetime) -> int:
        """Mark every outstanding token of the principal as used."""


class RevocationList(ABC):
    """Refresh token ids that must no longer be accepted."""

    @abstractmethod
    async def revoke(self, token_id: str, expires_at: datetime) -> bool:
        """Revoke a token id.

        Returns:
            True if this call revoked it, False if it was already revoked.
        """

    @abstractmethod
    async def is_revoked(self, token_id: str) -> bool:
        """Whether the token id has been revoked."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop revocations for tokens past their expiry. Returns the count."""
