"""In-process credential stores.

For development and tests, or a single-process deployment that accepts
losing state on restart. Each store guards its dicts with a
``threading.Lock``; no lock is ever held across an ``await``, so the stores
are safe from both worker threads and concurrent coroutines.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from wildauth.core.clock import Clock, utc_now
from wildauth.core.errors import EmailAlreadyRegisteredError, UsernameTakenError
from wildauth.schemas.credentials import NewPrincipal, Principal
from wildauth.stores.base import (
    CodeLedger,
    RateLimiter,
    ResetTokenLedger,
    RevocationList,
    UserDirectory,
)


class MemoryUserDirectory(UserDirectory):
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._by_id: dict[int, Principal] = {}
        self._next_id = 1

    async def find_by_username(self, username: str) -> Principal | None:
        with self._lock:
            return next(
                (p for p in self._by_id.values() if p.username == username), None
            )

    async def find_by_email(self, email: str) -> Principal | None:
        email = email.lower()
        with self._lock:
            return next((p for p in self._by_id.values() if p.email == email), None)

    async def find_by_id(self, principal_id: int) -> Principal | None:
        with self._lock:
            return self._by_id.get(principal_id)

    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        with self._lock:
            current = self._by_id.get(principal_id)
            if current is None:
                return False
            self._by_id[principal_id] = replace(current, password_hash=password_hash)
            return True

    async def update_last_login(self, principal_id: int, logged_in_at: datetime) -> None:
        with self._lock:
            current = self._by_id.get(principal_id)
            if current is not None:
                self._by_id[principal_id] = replace(current, last_login_at=logged_in_at)

    async def create(self, new: NewPrincipal) -> Principal:
        email = new.email.lower()
        with self._lock:
            for existing in self._by_id.values():
                if existing.username == new.username:
                    raise UsernameTakenError()
                if existing.email == email:
                    raise EmailAlreadyRegisteredError()
            principal = Principal(
                id=self._next_id,
                username=new.username,
                email=email,
                password_hash=new.password_hash,
                status=new.status,
                role=new.role,
                display_name=new.display_name,
                email_verified=new.email_verified,
                created_at=self._clock(),
            )
            self._by_id[principal.id] = principal
            self._next_id += 1
            return principal


class MemoryRateLimiter(RateLimiter):
    """Cooldown slots in a dict keyed by (subject_key, purpose)."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_action: dict[tuple[str, str], datetime] = {}

    async def allow(self, subject_key: str, purpose: str, cooldown: timedelta) -> bool:
        key = (subject_key, purpose)
        with self._lock:
            now = self._clock()
            last = self._last_action.get(key)
            if last is not None and now - last < cooldown:
                return False
            self._last_action[key] = now
            return True

    async def retry_after(
        self, subject_key: str, purpose: str, cooldown: timedelta
    ) -> timedelta:
        with self._lock:
            last = self._last_action.get((subject_key, purpose))
            if last is None:
                return timedelta(0)
            return max(timedelta(0), last + cooldown - self._clock())

    def prune(self, max_age: timedelta) -> int:
        """Forget slots older than ``max_age``. Returns the number removed."""
        with self._lock:
            cutoff = self._clock() - max_age
            stale = [key for key, last in self._last_action.items() if last <= cutoff]
            for key in stale:
                del self._last_action[key]
            return len(stale)


@dataclass
class _CodeRecord:
    email: str
    code: str
    purpose: str
    expires_at: datetime
    created_at: datetime
    is_used: bool = False


class MemoryCodeLedger(CodeLedger):
    """Append-only list of codes; superseded and consumed ones stay marked used."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[_CodeRecord] = []

    async def replace_unused(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        with self._lock:
            for record in self._records:
                if record.email == email and record.purpose == purpose:
                    record.is_used = True
            self._records.append(
                _CodeRecord(
                    email=email,
                    code=code,
                    purpose=purpose,
                    expires_at=expires_at,
                    created_at=now,
                )
            )

    async def claim(self, *, email: str, code: str, purpose: str, now: datetime) -> bool:
        with self._lock:
            for record in self._records:
                if (
                    record.email == email
                    and record.code == code
                    and record.purpose == purpose
                    and not record.is_used
                    and record.expires_at > now
                ):
                    record.is_used = True
                    return True
            return False

    async def release(self, *, email: str, code: str, purpose: str) -> bool:
        with self._lock:
            pair = [
                r for r in self._records if r.email == email and r.purpose == purpose
            ]
            if not pair or any(not r.is_used for r in pair):
                return False
            newest = pair[-1]
            if newest.code != code:
                return False
            newest.is_used = False
            return True


@dataclass
class _ResetRecord:
    principal_id: int
    expires_at: datetime
    created_at: datetime
    is_used: bool = False
    used_at: datetime | None = None


class MemoryResetTokenLedger(ResetTokenLedger):
    """Reset token hashes in a dict.

    ``claim_and_set_password`` needs the user directory to store the new
    hash. The claim is taken under the lock, the lock is released for the
    directory call, and the claim is undone if that call fails.
    """

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory
        self._lock = threading.Lock()
        self._records: dict[str, _ResetRecord] = {}

    async def add(
        self,
        *,
        token_hash: str,
        principal_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        with self._lock:
            self._records[token_hash] = _ResetRecord(
                principal_id=principal_id,
                expires_at=expires_at,
                created_at=now,
            )

    async def claim(self, *, token_hash: str, now: datetime) -> int | None:
        with self._lock:
            record = self._records.get(token_hash)
            if record is None or record.is_used or record.expires_at <= now:
                return None
            record.is_used = True
            record.used_at = now
            return record.principal_id

    async def claim_and_set_password(
        self, *, token_hash: str, now: datetime, password_hash: str
    ) -> int | None:
        principal_id = await self.claim(token_hash=token_hash, now=now)
        if principal_id is None:
            return None
        try:
            updated = await self._directory.update_password_hash(
                principal_id, password_hash
            )
        except Exception:
            self._release(token_hash)
            raise
        if not updated:
            self._release(token_hash)
            msg = f"Principal {principal_id} disappeared during password reset"
            raise LookupError(msg)
        await self.revoke_all_for_principal(principal_id=principal_id, now=now)
        return principal_id

    async def revoke_all_for_principal(self, *, principal_id: int, now: datetime) -> int:
        revoked = 0
        with self._lock:
            for record in self._records.values():
                if record.principal_id == principal_id and not record.is_used:
                    record.is_used = True
                    record.used_at = now
                    revoked += 1
        return revoked

    def _release(self, token_hash: str) -> None:
        with self._lock:
            record = self._records[token_hash]
            record.is_used = False
            record.used_at = None


class MemoryRevocationList(RevocationList):
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._revoked: dict[str, datetime] = {}

    async def revoke(self, token_id: str, expires_at: datetime) -> bool:
        with self._lock:
            if token_id in self._revoked:
                return False
            self._revoked[token_id] = expires_at
            return True

    async def is_revoked(self, token_id: str) -> bool:
        with self._lock:
            return token_id in self._revoked

    async def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [jti for jti, exp in self._revoked.items() if exp <= now]
            for jti in expired:
                del self._revoked[jti]
            return len(expired)
