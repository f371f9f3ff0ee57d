"""SQLAlchemy-backed credential stores.

Each public method opens its own session and runs one short transaction,
so a committed row is visible to every other worker before the method
returns. Winners are decided in the database: conditional UPDATEs report
``rowcount == 1`` to exactly one caller, and unique keys reject the losers
of an INSERT race.
"""

from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wildauth.core.clock import Clock, utc_now
from wildauth.core.errors import EmailAlreadyRegisteredError, UsernameTakenError
from wildauth.models.user import User
from wildauth.repositories.rate_limit_repository import RateLimitRepository
from wildauth.repositories.reset_token_repository import ResetTokenRepository
from wildauth.repositories.revoked_token_repository import RevokedTokenRepository
from wildauth.repositories.user_repository import UserRepository
from wildauth.repositories.verification_code_repository import (
    VerificationCodeRepository,
)
from wildauth.schemas.credentials import AccountStatus, NewPrincipal, Principal, Role
from wildauth.stores.base import (
    CodeLedger,
    RateLimiter,
    ResetTokenLedger,
    RevocationList,
    UserDirectory,
)

logger = structlog.get_logger()

SessionFactory = async_sessionmaker[AsyncSession]

# Attempts at supersede-then-insert before giving up on a unique-index race
_CODE_INSERT_ATTEMPTS = 3


def _to_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        email=user.email,
        password_hash=user.password_hash,
        status=AccountStatus(user.status),
        role=Role(user.role),
        display_name=user.display_name,
        email_verified=user.email_verified,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


class SqlUserDirectory(UserDirectory):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def find_by_username(self, username: str) -> Principal | None:
        async with self._session_factory() as db:
            user = await UserRepository.get_by_username(db, username)
            return _to_principal(user) if user else None

    async def find_by_email(self, email: str) -> Principal | None:
        async with self._session_factory() as db:
            user = await UserRepository.get_by_email(db, email)
            return _to_principal(user) if user else None

    async def find_by_id(self, principal_id: int) -> Principal | None:
        async with self._session_factory() as db:
            user = await UserRepository.get_by_id(db, principal_id)
            return _to_principal(user) if user else None

    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        async with self._session_factory() as db, db.begin():
            return await UserRepository.update_password_hash(
                db, principal_id, password_hash
            )

    async def update_last_login(self, principal_id: int, logged_in_at: datetime) -> None:
        async with self._session_factory() as db, db.begin():
            await UserRepository.update_last_login(db, principal_id, logged_in_at)

    async def create(self, new: NewPrincipal) -> Principal:
        if await self.find_by_username(new.username) is not None:
            raise UsernameTakenError()
        if await self.find_by_email(new.email) is not None:
            raise EmailAlreadyRegisteredError()
        try:
            async with self._session_factory() as db, db.begin():
                user = await UserRepository.create(
                    db,
                    username=new.username,
                    email=new.email,
                    password_hash=new.password_hash,
                    display_name=new.display_name,
                    email_verified=new.email_verified,
                    status=new.status.value,
                    role=new.role.value,
                )
                principal = _to_principal(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration
            if await self.find_by_username(new.username) is not None:
                raise UsernameTakenError() from exc
            raise EmailAlreadyRegisteredError() from exc
        return principal


class SqlRateLimiter(RateLimiter):
    """Cooldown slots in ``rate_limit_slots``.

    ``allow`` first tries to advance an existing, cooled-down slot. If no
    row moved, it tries to insert the first slot for the key; a duplicate
    key means the slot exists and is still cooling down, or another caller
    just took it. Either way the answer is no.
    """

    def __init__(self, session_factory: SessionFactory, clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def allow(self, subject_key: str, purpose: str, cooldown: timedelta) -> bool:
        now = self._clock()
        async with self._session_factory() as db, db.begin():
            advanced = await RateLimitRepository.try_advance(
                db,
                subject_key=subject_key,
                purpose=purpose,
                now=now,
                threshold=now - cooldown,
            )
        if advanced:
            return True
        try:
            async with self._session_factory() as db, db.begin():
                await RateLimitRepository.create(
                    db, subject_key=subject_key, purpose=purpose, now=now
                )
        except IntegrityError:
            return False
        return True

    async def retry_after(
        self, subject_key: str, purpose: str, cooldown: timedelta
    ) -> timedelta:
        async with self._session_factory() as db:
            last = await RateLimitRepository.get_last_action(
                db, subject_key=subject_key, purpose=purpose
            )
        if last is None:
            return timedelta(0)
        return max(timedelta(0), last + cooldown - self._clock())


class SqlCodeLedger(CodeLedger):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def replace_unused(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        for attempt in range(1, _CODE_INSERT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as db, db.begin():
                    await VerificationCodeRepository.supersede_unused(
                        db, email=email, purpose=purpose
                    )
                    await VerificationCodeRepository.create(
                        db,
                        email=email,
                        code=code,
                        purpose=purpose,
                        expires_at=expires_at,
                        created_at=now,
                    )
                return
            except IntegrityError:
                if attempt == _CODE_INSERT_ATTEMPTS:
                    raise
                logger.warning(
                    "Verification code insert conflict, retrying",
                    purpose=purpose,
                    attempt=attempt,
                )

    async def claim(self, *, email: str, code: str, purpose: str, now: datetime) -> bool:
        async with self._session_factory() as db, db.begin():
            return await VerificationCodeRepository.claim(
                db, email=email, code=code, purpose=purpose, now=now
            )

    async def release(self, *, email: str, code: str, purpose: str) -> bool:
        try:
            async with self._session_factory() as db, db.begin():
                return await VerificationCodeRepository.release(
                    db, email=email, code=code, purpose=purpose
                )
        except IntegrityError:
            return False


class SqlResetTokenLedger(ResetTokenLedger):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add(
        self,
        *,
        token_hash: str,
        principal_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        async with self._session_factory() as db, db.begin():
            await ResetTokenRepository.create(
                db,
                token_hash=token_hash,
                principal_id=principal_id,
                expires_at=expires_at,
                created_at=now,
            )

    async def claim(self, *, token_hash: str, now: datetime) -> int | None:
        async with self._session_factory() as db, db.begin():
            return await ResetTokenRepository.claim(db, token_hash=token_hash, now=now)

    async def claim_and_set_password(
        self, *, token_hash: str, now: datetime, password_hash: str
    ) -> int | None:
        async with self._session_factory() as db, db.begin():
            principal_id = await ResetTokenRepository.claim(
                db, token_hash=token_hash, now=now
            )
            if principal_id is None:
                return None
            if not await UserRepository.update_password_hash(
                db, principal_id, password_hash
            ):
                # Raising inside the transaction rolls the claim back
                msg = f"Principal {principal_id} disappeared during password reset"
                raise LookupError(msg)
            await ResetTokenRepository.revoke_all_for_principal(
                db, principal_id=principal_id, now=now
            )
        return principal_id

    async def revoke_all_for_principal(self, *, principal_id: int, now: datetime) -> int:
        async with self._session_factory() as db, db.begin():
            return await ResetTokenRepository.revoke_all_for_principal(
                db, principal_id=principal_id, now=now
            )


class SqlRevocationList(RevocationList):
    def __init__(self, session_factory: SessionFactory, clock: Clock = utc_now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def revoke(self, token_id: str, expires_at: datetime) -> bool:
        try:
            async with self._session_factory() as db, db.begin():
                await RevokedTokenRepository.create(
                    db, jti=token_id, expires_at=expires_at, revoked_at=self._clock()
                )
        except IntegrityError:
            return False
        return True

    async def is_revoked(self, token_id: str) -> bool:
        async with self._session_factory() as db:
            return await RevokedTokenRepository.exists(db, token_id)

    async def purge_expired(self) -> int:
        async with self._session_factory() as db, db.begin():
            return await RevokedTokenRepository.delete_expired(db, self._clock())
