"""Tests for the credential flows in CredentialAuthenticator.

Login, registration, password reset, refresh rotation and logout, all on
memory stores and the fake clock.
"""

import asyncio
from unittest.mock import patch

import pytest

from tests.conftest import (
    ALICE_EMAIL,
    BOB_EMAIL,
    OTHER_STRONG_PASSWORD,
    STRONG_PASSWORD,
    create_principal,
    make_settings,
)
from wildauth.core.errors import (
    DeliveryFailedError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    TokenExpiredError,
    TokenInvalidError,
    TokenInvalidOrExpiredError,
    UsernameTakenError,
    ValidationError,
    WeakPasswordError,
)
from wildauth.schemas.credentials import AccountStatus, CodePurpose, Role
from wildauth.services.authenticator import is_email_identifier, validate_username
from wildauth.services.factory import build_memory_services

# =============================================================================
# Helpers
# =============================================================================


class TestUsernameRules:
    @pytest.mark.parametrize("username", ["abc", "alice_01", "x" * 50])
    def test_accepts_valid(self, username):
        assert validate_username(username) == username

    def test_strips_surrounding_space(self):
        assert validate_username("  alice ") == "alice"

    @pytest.mark.parametrize(
        "username", ["ab", "x" * 51, "a@b", "with space", "", "bob\ud800"]
    )
    def test_rejects_invalid(self, username):
        with pytest.raises(ValidationError):
            validate_username(username)

    def test_identifier_with_at_sign_is_email(self):
        assert is_email_identifier("alice@example.com")
        assert not is_email_identifier("alice")


# =============================================================================
# Login
# =============================================================================


class TestLogin:
    async def test_login_by_username(self, services, alice):
        result = await services.authenticator.login("alice", STRONG_PASSWORD)

        assert result.principal.id == alice.id
        assert result.tokens.token_type == "bearer"
        assert result.tokens.expires_in == 3600
        claims = services.issuer.verify_access_token(result.tokens.access_token)
        assert claims.principal_id == alice.id
        assert claims.username == "alice"
        assert claims.role == Role.USER.value

    async def test_login_by_email_is_case_insensitive(self, services, alice):
        result = await services.authenticator.login("Alice@Example.com", STRONG_PASSWORD)
        assert result.principal.id == alice.id

    async def test_refresh_token_is_issued(self, services, alice):
        result = await services.authenticator.login("alice", STRONG_PASSWORD)
        claims = services.issuer.verify_refresh_token(result.tokens.refresh_token)
        assert claims.principal_id == alice.id

    async def test_records_last_login(self, services, alice, clock):
        assert alice.last_login_at is None
        result = await services.authenticator.login("alice", STRONG_PASSWORD)

        assert result.principal.last_login_at == clock.now
        stored = await services.directory.find_by_id(alice.id)
        assert stored.last_login_at == clock.now

    async def test_public_view_has_no_hash(self, services, alice):
        result = await services.authenticator.login("alice", STRONG_PASSWORD)
        public = result.principal.to_public()
        assert "password_hash" not in public
        assert public["username"] == "alice"

    async def test_failures_are_indistinguishable(self, services, alice):
        """Unknown account, wrong password and inactive account look the same."""
        await create_principal(
            services,
            username="carol",
            email="carol@example.com",
            status=AccountStatus.SUSPENDED,
        )
        attempts = [
            ("nobody", STRONG_PASSWORD),
            ("nobody@example.com", STRONG_PASSWORD),
            ("alice", "Wr0ng!Password"),
            ("carol", STRONG_PASSWORD),
        ]
        errors = []
        for identifier, password in attempts:
            with pytest.raises(InvalidCredentialsError) as exc_info:
                await services.authenticator.login(identifier, password)
            errors.append((exc_info.value.code, exc_info.value.message))
        assert len(set(errors)) == 1

    @pytest.mark.parametrize("status", [AccountStatus.SUSPENDED, AccountStatus.PENDING])
    async def test_inactive_account_cannot_log_in(self, services, status):
        await create_principal(services, status=status)
        with pytest.raises(InvalidCredentialsError):
            await services.authenticator.login("alice", STRONG_PASSWORD)

    async def test_unknown_account_still_runs_a_hash(self, services):
        with patch.object(
            services.hasher, "dummy_verify", wraps=services.hasher.dummy_verify
        ) as dummy:
            with pytest.raises(InvalidCredentialsError):
                await services.authenticator.login("nobody", STRONG_PASSWORD)
        dummy.assert_called_once_with(STRONG_PASSWORD)

    @pytest.mark.parametrize(("identifier", "password"), [("", "x"), ("  ", "x"), ("alice", "")])
    async def test_blank_input_is_rejected(self, services, alice, identifier, password):
        with pytest.raises(InvalidCredentialsError):
            await services.authenticator.login(identifier, password)

    @pytest.mark.parametrize(
        ("identifier", "password"),
        [
            ("alice", "\ud800abc"),
            ("ali\udc00ce", STRONG_PASSWORD),
            ("alice\ud800@example.com", STRONG_PASSWORD),
        ],
    )
    async def test_lone_surrogates_are_invalid_credentials(
        self, services, alice, identifier, password
    ):
        with pytest.raises(InvalidCredentialsError):
            await services.authenticator.login(identifier, password)


# =============================================================================
# Registration
# =============================================================================


async def _register_code(services, notifier, email=BOB_EMAIL) -> str:
    await services.codes.issue_code(email, CodePurpose.REGISTER)
    return notifier.last_code(email, CodePurpose.REGISTER)


class TestRegister:
    async def test_register_with_code(self, services, notifier):
        code = await _register_code(services, notifier)

        principal = await services.authenticator.register(
            username="bob",
            email="Bob@Example.com",
            password=STRONG_PASSWORD,
            verification_code=code,
        )

        assert principal.username == "bob"
        assert principal.email == BOB_EMAIL
        assert principal.email_verified is True
        assert principal.status is AccountStatus.ACTIVE
        assert principal.role is Role.USER
        assert principal.display_name == "bob"
        assert services.hasher.verify(STRONG_PASSWORD, principal.password_hash)

    async def test_new_account_can_log_in(self, services, notifier):
        code = await _register_code(services, notifier)
        await services.authenticator.register(
            username="bob",
            email=BOB_EMAIL,
            password=STRONG_PASSWORD,
            display_name="Bob B.",
            verification_code=code,
        )
        result = await services.authenticator.login(BOB_EMAIL, STRONG_PASSWORD)
        assert result.principal.display_name == "Bob B."

    async def test_code_is_spent_by_registration(self, services, notifier):
        code = await _register_code(services, notifier)
        await services.authenticator.register(
            username="bob", email=BOB_EMAIL, password=STRONG_PASSWORD, verification_code=code
        )
        with pytest.raises(InvalidOrExpiredCodeError):
            await services.codes.consume_code(BOB_EMAIL, code, CodePurpose.REGISTER)

    async def test_code_required_by_default(self, services):
        with pytest.raises(ValidationError, match="Verification code is required"):
            await services.authenticator.register(
                username="bob", email=BOB_EMAIL, password=STRONG_PASSWORD
            )
        assert await services.directory.find_by_email(BOB_EMAIL) is None

    async def test_code_optional_when_verification_disabled(self, clock, notifier):
        services = build_memory_services(
            make_settings(require_email_verification=False),
            clock=clock,
            notifier=notifier,
        )
        principal = await services.authenticator.register(
            username="bob", email=BOB_EMAIL, password=STRONG_PASSWORD
        )
        assert principal.email_verified is False

    async def test_optional_code_is_still_checked(self, clock, notifier):
        services = build_memory_services(
            make_settings(require_email_verification=False),
            clock=clock,
            notifier=notifier,
        )
        with pytest.raises(InvalidOrExpiredCodeError):
            await services.authenticator.register(
                username="bob",
                email=BOB_EMAIL,
                password=STRONG_PASSWORD,
                verification_code="123456",
            )

    async def test_wrong_code_creates_nothing(self, services, notifier):
        await _register_code(services, notifier)
        with pytest.raises(InvalidOrExpiredCodeError):
            await services.authenticator.register(
                username="bob",
                email=BOB_EMAIL,
                password=STRONG_PASSWORD,
                verification_code="000000"
                if notifier.last_code(BOB_EMAIL) != "000000"
                else "111111",
            )
        assert await services.directory.find_by_username("bob") is None

    async def test_weak_password_lists_failures(self, services, notifier):
        code = await _register_code(services, notifier)
        with pytest.raises(WeakPasswordError) as exc_info:
            await services.authenticator.register(
                username="bob", email=BOB_EMAIL, password="short", verification_code=code
            )
        assert len(exc_info.value.failures) > 1
        # The code was not spent by the rejected attempt
        await services.codes.consume_code(BOB_EMAIL, code, CodePurpose.REGISTER)

    async def test_taken_username(self, services, alice, notifier):
        code = await _register_code(services, notifier)
        with pytest.raises(UsernameTakenError):
            await services.authenticator.register(
                username="alice", email=BOB_EMAIL, password=STRONG_PASSWORD, verification_code=code
            )

    async def test_code_survives_lost_creation_race(self, services, notifier):
        code = await _register_code(services, notifier)

        with (
            patch.object(
                services.directory, "create", side_effect=UsernameTakenError()
            ),
            pytest.raises(UsernameTakenError),
        ):
            await services.authenticator.register(
                username="bob", email=BOB_EMAIL, password=STRONG_PASSWORD, verification_code=code
            )

        principal = await services.authenticator.register(
            username="bobby", email=BOB_EMAIL, password=STRONG_PASSWORD, verification_code=code
        )
        assert principal.email_verified is True

    async def test_released_code_is_still_single_use(self, services, notifier):
        code = await _register_code(services, notifier)
        with (
            patch.object(
                services.directory, "create", side_effect=EmailAlreadyRegisteredError()
            ),
            pytest.raises(EmailAlreadyRegisteredError),
        ):
            await services.authenticator.register(
                username="bob", email=BOB_EMAIL, password=STRONG_PASSWORD, verification_code=code
            )

        await services.codes.consume_code(BOB_EMAIL, code, CodePurpose.REGISTER)
        with pytest.raises(InvalidOrExpiredCodeError):
            await services.codes.consume_code(BOB_EMAIL, code, CodePurpose.REGISTER)

    async def test_taken_email(self, clock, notifier):
        services = build_memory_services(
            make_settings(require_email_verification=False),
            clock=clock,
            notifier=notifier,
        )
        await create_principal(services)
        with pytest.raises(EmailAlreadyRegisteredError):
            await services.authenticator.register(
                username="alice2", email=ALICE_EMAIL.upper(), password=STRONG_PASSWORD
            )

    @pytest.mark.parametrize(
        ("username", "email"),
        [("ab", BOB_EMAIL), ("bob smith", BOB_EMAIL), ("bob", "not-an-email")],
    )
    async def test_invalid_fields(self, services, username, email):
        with pytest.raises(ValidationError):
            await services.authenticator.register(
                username=username, email=email, password=STRONG_PASSWORD
            )

    async def test_display_name_too_long(self, services, notifier):
        code = await _register_code(services, notifier)
        with pytest.raises(ValidationError):
            await services.authenticator.register(
                username="bob",
                email=BOB_EMAIL,
                password=STRONG_PASSWORD,
                display_name="x" * 101,
                verification_code=code,
            )


# =============================================================================
# Password reset
# =============================================================================


class TestPasswordReset:
    async def test_full_reset_flow(self, services, alice, notifier):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        email, token = notifier.reset_tokens[-1]
        assert email == ALICE_EMAIL
        assert f"token={token}" in notifier.sent[-1].text

        assert await services.authenticator.confirm_reset(token, OTHER_STRONG_PASSWORD) == alice.id

        with pytest.raises(InvalidCredentialsError):
            await services.authenticator.login("alice", STRONG_PASSWORD)
        await services.authenticator.login("alice", OTHER_STRONG_PASSWORD)

    async def test_token_cannot_be_reused(self, services, alice, notifier):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        _, token = notifier.reset_tokens[-1]
        await services.authenticator.confirm_reset(token, OTHER_STRONG_PASSWORD)

        with pytest.raises(TokenInvalidOrExpiredError):
            await services.authenticator.confirm_reset(token, "Th1rd$Password")

    async def test_unknown_email_is_silent(self, services, notifier):
        await services.authenticator.request_password_reset("ghost@example.com")
        assert notifier.sent == []

    async def test_inactive_account_is_silent(self, services, notifier):
        await create_principal(services, status=AccountStatus.SUSPENDED)
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        assert notifier.sent == []

    async def test_throttled_request_is_silent(self, services, alice, notifier, clock):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        assert len(notifier.reset_tokens) == 1

        clock.advance(seconds=60)
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        assert len(notifier.reset_tokens) == 2

    async def test_malformed_email_is_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.authenticator.request_password_reset("nope")

    async def test_delivery_failure_is_reported(self, services, alice, notifier):
        notifier.fail = True
        with pytest.raises(DeliveryFailedError):
            await services.authenticator.request_password_reset(ALICE_EMAIL)

    async def test_weak_password_keeps_token(self, services, alice, notifier):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        _, token = notifier.reset_tokens[-1]

        with pytest.raises(WeakPasswordError):
            await services.authenticator.confirm_reset(token, "weak")
        assert await services.authenticator.confirm_reset(token, OTHER_STRONG_PASSWORD) == alice.id

    async def test_unencodable_new_password_is_weak(self, services, alice, notifier):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        _, token = notifier.reset_tokens[-1]

        with pytest.raises(WeakPasswordError):
            await services.authenticator.confirm_reset(token, "Str0ng!Pass\ud800")
        stored = await services.directory.find_by_id(alice.id)
        assert stored.password_hash == alice.password_hash

    async def test_unencodable_token_is_invalid(self, services, alice):
        with pytest.raises(TokenInvalidOrExpiredError):
            await services.authenticator.confirm_reset("tok\ud800", OTHER_STRONG_PASSWORD)

    async def test_expired_token_keeps_password(self, services, alice, notifier, clock):
        await services.authenticator.request_password_reset(ALICE_EMAIL)
        _, token = notifier.reset_tokens[-1]
        clock.advance(minutes=30)

        with pytest.raises(TokenInvalidOrExpiredError):
            await services.authenticator.confirm_reset(token, OTHER_STRONG_PASSWORD)
        await services.authenticator.login("alice", STRONG_PASSWORD)


# =============================================================================
# Refresh and logout
# =============================================================================


class TestRefresh:
    async def test_rotation_issues_new_pair(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)

        pair = await services.authenticator.refresh_access_token(login.tokens.refresh_token)

        assert pair.refresh_token != login.tokens.refresh_token
        claims = services.issuer.verify_access_token(pair.access_token)
        assert claims.principal_id == alice.id

    async def test_rotated_token_cannot_be_replayed(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        await services.authenticator.refresh_access_token(login.tokens.refresh_token)

        with pytest.raises(TokenInvalidError):
            await services.authenticator.refresh_access_token(login.tokens.refresh_token)

    async def test_concurrent_refresh_has_one_winner(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        results = await asyncio.gather(
            *(
                services.authenticator.refresh_access_token(login.tokens.refresh_token)
                for _ in range(10)
            ),
            return_exceptions=True,
        )
        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, TokenInvalidError) for r in results) == 9

    async def test_rotation_disabled_returns_same_token(self, clock, notifier):
        services = build_memory_services(
            make_settings(refresh_token_rotation=False), clock=clock, notifier=notifier
        )
        await create_principal(services)
        login = await services.authenticator.login("alice", STRONG_PASSWORD)

        first = await services.authenticator.refresh_access_token(login.tokens.refresh_token)
        second = await services.authenticator.refresh_access_token(login.tokens.refresh_token)
        assert first.refresh_token == login.tokens.refresh_token
        assert second.refresh_token == login.tokens.refresh_token

    async def test_access_token_is_not_a_refresh_token(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        with pytest.raises(TokenInvalidError):
            await services.authenticator.refresh_access_token(login.tokens.access_token)

    async def test_expired_refresh_token(self, services, alice, clock):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        clock.advance(days=7)
        with pytest.raises(TokenExpiredError):
            await services.authenticator.refresh_access_token(login.tokens.refresh_token)

    async def test_inactive_account_cannot_refresh(self, services, alice, clock):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        with patch.object(services.directory, "find_by_id", return_value=None):
            with pytest.raises(TokenInvalidError):
                await services.authenticator.refresh_access_token(
                    login.tokens.refresh_token
                )


class TestLogout:
    async def test_logout_revokes_refresh_token(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        await services.authenticator.logout(login.tokens.refresh_token)

        with pytest.raises(TokenInvalidError):
            await services.authenticator.refresh_access_token(login.tokens.refresh_token)

    async def test_logout_twice_is_not_an_error(self, services, alice):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        await services.authenticator.logout(login.tokens.refresh_token)
        await services.authenticator.logout(login.tokens.refresh_token)

    async def test_logout_with_garbage_fails(self, services):
        with pytest.raises(TokenInvalidError):
            await services.authenticator.logout("not-a-jwt")

    async def test_revocations_are_purged_after_expiry(self, services, alice, clock):
        login = await services.authenticator.login("alice", STRONG_PASSWORD)
        await services.authenticator.logout(login.tokens.refresh_token)

        assert await services.revocations.purge_expired() == 0
        clock.advance(days=7)
        assert await services.revocations.purge_expired() == 1
