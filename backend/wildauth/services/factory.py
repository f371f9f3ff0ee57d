"""Wiring for the credential services.

There are no module-level service singletons. The application builds one
AuthServices container at startup and keeps it on ``app.state``; tests
build their own with a fake clock and a recording notifier.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wildauth.core.clock import Clock, utc_now
from wildauth.core.config import Settings
from wildauth.core.database import create_engine, create_session_factory
from wildauth.core.email import EmailNotifier, build_email_notifier
from wildauth.core.passwords import SecretHasher
from wildauth.core.tokens import TokenIssuer
from wildauth.services.authenticator import CredentialAuthenticator
from wildauth.services.reset_tokens import ResetTokenStore
from wildauth.services.verification_codes import VerificationCodeStore
from wildauth.stores.base import (
    CodeLedger,
    RateLimiter,
    ResetTokenLedger,
    RevocationList,
    UserDirectory,
)
from wildauth.stores.memory import (
    MemoryCodeLedger,
    MemoryRateLimiter,
    MemoryResetTokenLedger,
    MemoryRevocationList,
    MemoryUserDirectory,
)
from wildauth.stores.sql import (
    SqlCodeLedger,
    SqlRateLimiter,
    SqlResetTokenLedger,
    SqlRevocationList,
    SqlUserDirectory,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Everything the HTTP layer needs, built once per application."""

    settings: Settings
    clock: Clock
    hasher: SecretHasher
    issuer: TokenIssuer
    notifier: EmailNotifier
    directory: UserDirectory
    rate_limiter: RateLimiter
    code_ledger: CodeLedger
    reset_ledger: ResetTokenLedger
    revocations: RevocationList
    codes: VerificationCodeStore
    reset_tokens: ResetTokenStore
    authenticator: CredentialAuthenticator


def _signing_secrets(settings: Settings) -> tuple[str, str]:
    """Return (access, refresh) secrets, generating missing ones outside production.

    Generated secrets live only in this process: tokens stop verifying on
    restart.

    Raises:
        ValueError: A secret is missing in production.
    """
    access = settings.auth_access_secret.get_secret_value()
    refresh = settings.auth_refresh_secret.get_secret_value()
    if access and refresh:
        return access, refresh
    if settings.environment == "production":
        raise ValueError("AUTH_ACCESS_SECRET and AUTH_REFRESH_SECRET must be set")
    logger.warning(
        "Token signing secrets not configured; using ephemeral secrets "
        "(tokens will not survive a restart)"
    )
    return access or secrets.token_hex(32), refresh or secrets.token_hex(32)


def _assemble(
    settings: Settings,
    *,
    clock: Clock,
    notifier: EmailNotifier,
    hasher: SecretHasher,
    directory: UserDirectory,
    rate_limiter: RateLimiter,
    code_ledger: CodeLedger,
    reset_ledger: ResetTokenLedger,
    revocations: RevocationList,
) -> AuthServices:
    access_secret, refresh_secret = _signing_secrets(settings)
    issuer = TokenIssuer.from_settings(
        settings,
        access_secret=access_secret,
        refresh_secret=refresh_secret,
        clock=clock,
    )
    codes = VerificationCodeStore(
        ledger=code_ledger,
        rate_limiter=rate_limiter,
        directory=directory,
        notifier=notifier,
        clock=clock,
        ttl=timedelta(minutes=settings.verification_code_ttl_minutes),
        cooldown=timedelta(seconds=settings.verification_code_cooldown_seconds),
    )
    reset_tokens = ResetTokenStore(
        ledger=reset_ledger,
        clock=clock,
        ttl=timedelta(minutes=settings.reset_token_ttl_minutes),
    )
    authenticator = CredentialAuthenticator(
        directory=directory,
        hasher=hasher,
        issuer=issuer,
        codes=codes,
        reset_tokens=reset_tokens,
        rate_limiter=rate_limiter,
        revocations=revocations,
        notifier=notifier,
        clock=clock,
        rotate_refresh_tokens=settings.refresh_token_rotation,
        require_email_verification=settings.require_email_verification,
        reset_request_cooldown=timedelta(
            seconds=settings.reset_request_cooldown_seconds
        ),
    )
    return AuthServices(
        settings=settings,
        clock=clock,
        hasher=hasher,
        issuer=issuer,
        notifier=notifier,
        directory=directory,
        rate_limiter=rate_limiter,
        code_ledger=code_ledger,
        reset_ledger=reset_ledger,
        revocations=revocations,
        codes=codes,
        reset_tokens=reset_tokens,
        authenticator=authenticator,
    )


def build_memory_services(
    settings: Settings,
    *,
    clock: Clock = utc_now,
    notifier: EmailNotifier | None = None,
) -> AuthServices:
    """Build services over in-process stores."""
    directory = MemoryUserDirectory(clock=clock)
    return _assemble(
        settings,
        clock=clock,
        notifier=notifier or build_email_notifier(settings),
        hasher=SecretHasher(rounds=settings.bcrypt_rounds),
        directory=directory,
        rate_limiter=MemoryRateLimiter(clock=clock),
        code_ledger=MemoryCodeLedger(),
        reset_ledger=MemoryResetTokenLedger(directory),
        revocations=MemoryRevocationList(clock=clock),
    )


def build_sql_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock = utc_now,
    notifier: EmailNotifier | None = None,
) -> AuthServices:
    """Build services over the SQL stores sharing one session factory."""
    return _assemble(
        settings,
        clock=clock,
        notifier=notifier or build_email_notifier(settings),
        hasher=SecretHasher(rounds=settings.bcrypt_rounds),
        directory=SqlUserDirectory(session_factory),
        rate_limiter=SqlRateLimiter(session_factory, clock=clock),
        code_ledger=SqlCodeLedger(session_factory),
        reset_ledger=SqlResetTokenLedger(session_factory),
        revocations=SqlRevocationList(session_factory, clock=clock),
    )


def build_services(settings: Settings) -> AuthServices:
    """Build services for the configured ``store_backend``."""
    if settings.store_backend == "memory":
        return build_memory_services(settings)
    engine = create_engine(settings)
    return build_sql_services(settings, create_session_factory(engine))
