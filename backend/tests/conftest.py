"""Shared fixtures for the credential subsystem tests.

Memory-backed services run against a FakeClock and a recording notifier.
SQL-store tests use an in-memory SQLite database (aiosqlite, one shared
connection via StaticPool) with the same ORM metadata as production.
Concurrency tests use a file-backed database with NullPool instead, so
concurrent sessions really hold separate connections.
"""

from collections.abc import AsyncGenerator, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from wildauth.core.config import Settings
from wildauth.core.email import EmailMessage, EmailNotifier
from wildauth.core.rate_limiting import limiter
from wildauth.main import create_app
from wildauth.models import Base
from wildauth.schemas.credentials import (
    AccountStatus,
    CodePurpose,
    NewPrincipal,
    Principal,
)
from wildauth.services.factory import (
    AuthServices,
    build_memory_services,
    build_sql_services,
)
from wildauth.stores.memory import MemoryCodeLedger

# Security: test-only secrets. Production secrets come from the environment.
TEST_ACCESS_SECRET = "test-access-secret-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow
TEST_REFRESH_SECRET = "test-refresh-secret-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow

STRONG_PASSWORD = "Str0ng!Passw0rd"  # nosec B105
OTHER_STRONG_PASSWORD = "An0ther#Secret"  # nosec B105

ALICE_EMAIL = "alice@example.com"
BOB_EMAIL = "bob@example.com"

# Minimum bcrypt cost keeps the suite fast
TEST_BCRYPT_ROUNDS = 4

CLOCK_START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Settable time source. Call it to read the time; advance() to move it."""

    def __init__(self, start: datetime = CLOCK_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailNotifier(EmailNotifier):
    """Keeps every message in memory. Set ``fail`` to simulate outages."""

    def __init__(self) -> None:
        super().__init__(frontend_url="http://localhost:3000")
        self.sent: list[EmailMessage] = []
        self.codes: list[tuple[str, str, CodePurpose]] = []
        self.reset_tokens: list[tuple[str, str]] = []
        self.fail = False

    async def send_code(self, email: str, code: str, purpose: CodePurpose) -> bool:
        if self.fail:
            return False
        self.codes.append((email, code, purpose))
        return await super().send_code(email, code, purpose)

    async def send_reset_link(self, email: str, token: str) -> bool:
        if self.fail:
            return False
        self.reset_tokens.append((email, token))
        return await super().send_reset_link(email, token)

    async def deliver(self, message: EmailMessage) -> bool:
        if self.fail:
            return False
        self.sent.append(message)
        return True

    def last_code(self, email: str, purpose: CodePurpose | None = None) -> str:
        """Return the most recent code sent to an address."""
        for sent_email, code, sent_purpose in reversed(self.codes):
            if sent_email == email and (purpose is None or sent_purpose == purpose):
                return code
        msg = f"No code sent to {email}"
        raise LookupError(msg)


def unused_code_count(ledger: MemoryCodeLedger, email: str, purpose: str) -> int:
    """Count live (unused) codes for an (email, purpose) pair."""
    return sum(
        1
        for record in ledger._records
        if record.email == email and record.purpose == purpose and not record.is_used
    )


def make_settings(**overrides: object) -> Settings:
    """Build test settings; keyword arguments override the defaults."""
    values: dict[str, object] = {
        "environment": "test",
        "store_backend": "memory",
        "auth_access_secret": SecretStr(TEST_ACCESS_SECRET),
        "auth_refresh_secret": SecretStr(TEST_REFRESH_SECRET),
        "bcrypt_rounds": TEST_BCRYPT_ROUNDS,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def notifier() -> RecordingEmailNotifier:
    return RecordingEmailNotifier()


@pytest.fixture
def services(
    test_settings: Settings, clock: FakeClock, notifier: RecordingEmailNotifier
) -> AuthServices:
    """Memory-backed services on the fake clock."""
    return build_memory_services(test_settings, clock=clock, notifier=notifier)


async def create_principal(
    services: AuthServices,
    *,
    username: str = "alice",
    email: str = ALICE_EMAIL,
    password: str = STRONG_PASSWORD,
    status: AccountStatus = AccountStatus.ACTIVE,
) -> Principal:
    """Insert an account directly through the directory."""
    return await services.directory.create(
        NewPrincipal(
            username=username,
            email=email,
            password_hash=services.hasher.hash(password),
            display_name=username.title(),
            status=status,
        )
    )


@pytest.fixture
async def alice(services: AuthServices) -> Principal:
    """Active account alice / alice@example.com with STRONG_PASSWORD."""
    return await create_principal(services)


# =============================================================================
# SQL fixtures
# =============================================================================


@pytest.fixture
async def sql_session_factory() -> AsyncGenerator[
    async_sessionmaker[AsyncSession], None
]:
    """Fresh in-memory SQLite schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_services(
    test_settings: Settings,
    clock: FakeClock,
    notifier: RecordingEmailNotifier,
    sql_session_factory: async_sessionmaker[AsyncSession],
) -> AuthServices:
    """SQL-backed services on SQLite and the fake clock."""
    return build_sql_services(
        test_settings, sql_session_factory, clock=clock, notifier=notifier
    )


@pytest.fixture
async def sql_file_session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed SQLite schema with one connection per session.

    Sessions opened concurrently run on separate connections, so the
    conditional UPDATEs and unique keys race inside SQLite itself.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'wildauth.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_file_services(
    test_settings: Settings,
    clock: FakeClock,
    notifier: RecordingEmailNotifier,
    sql_file_session_factory: async_sessionmaker[AsyncSession],
) -> AuthServices:
    """SQL-backed services on a file database, for concurrency tests."""
    return build_sql_services(
        test_settings, sql_file_session_factory, clock=clock, notifier=notifier
    )


# =============================================================================
# HTTP fixtures
# =============================================================================


@contextmanager
def rate_limiting_disabled() -> Iterator[None]:
    """Turn the per-IP HTTP limit off, restoring its previous state on exit."""
    original_enabled = limiter.enabled
    limiter.enabled = False
    try:
        yield
    finally:
        limiter.enabled = original_enabled


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable the per-IP HTTP limit unless a test turns it back on.

    Security: the limit itself is covered in test_rate_limiting.py.
    """
    with rate_limiting_disabled():
        yield


@pytest.fixture
async def client(services: AuthServices) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against an app wired to the memory services."""
    app = create_app(services)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
