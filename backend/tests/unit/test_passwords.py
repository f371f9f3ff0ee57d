"""Tests for password hashing and the strength policy."""

import pytest

from tests.conftest import OTHER_STRONG_PASSWORD, STRONG_PASSWORD, TEST_BCRYPT_ROUNDS
from wildauth.core.errors import WeakPasswordError
from wildauth.core.passwords import (
    BCRYPT_MAX_BYTES,
    SecretHasher,
    password_strength_failures,
    utf8_bytes,
    validate_password_strength,
)


@pytest.fixture
def hasher() -> SecretHasher:
    return SecretHasher(rounds=TEST_BCRYPT_ROUNDS)


# =============================================================================
# Strength policy
# =============================================================================


class TestPasswordStrength:
    """All four character classes plus the length bounds are mandatory."""

    def test_strong_password_passes(self):
        assert password_strength_failures(STRONG_PASSWORD) == []
        validate_password_strength(STRONG_PASSWORD)

    @pytest.mark.parametrize(
        ("password", "expected_rule"),
        [
            ("Sh0rt!", "at least 8 characters"),
            ("nouppercase1!", "uppercase"),
            ("NOLOWERCASE1!", "lowercase"),
            ("NoDigitsHere!", "number"),
            ("NoSpecial123", "special character"),
        ],
    )
    def test_each_missing_rule_is_reported(self, password, expected_rule):
        failures = password_strength_failures(password)
        assert len(failures) == 1
        assert expected_rule in failures[0]

    def test_all_failures_are_listed(self):
        """A password failing several rules reports every one of them."""
        with pytest.raises(WeakPasswordError) as exc_info:
            validate_password_strength("abc")
        assert len(exc_info.value.failures) == 4
        assert exc_info.value.status_code == 400
        assert exc_info.value.details == [
            {"rule": failure} for failure in exc_info.value.failures
        ]

    def test_over_72_bytes_is_rejected(self):
        password = "Aa1!" + "x" * BCRYPT_MAX_BYTES
        failures = password_strength_failures(password)
        assert any("72 bytes" in f for f in failures)

    def test_multibyte_characters_count_as_bytes(self):
        """25 three-byte characters exceed the 72-byte limit."""
        password = "Aa1!" + "€" * 25
        assert any("72 bytes" in f for f in password_strength_failures(password))


# =============================================================================
# Hashing
# =============================================================================


class TestSecretHasher:
    def test_round_trip(self, hasher):
        hashed = hasher.hash(STRONG_PASSWORD)
        assert hasher.verify(STRONG_PASSWORD, hashed) is True

    def test_wrong_password_does_not_verify(self, hasher):
        hashed = hasher.hash(STRONG_PASSWORD)
        assert hasher.verify(OTHER_STRONG_PASSWORD, hashed) is False

    def test_hashes_are_salted(self, hasher):
        """Two hashes of the same plaintext differ but both verify."""
        first = hasher.hash(STRONG_PASSWORD)
        second = hasher.hash(STRONG_PASSWORD)
        assert first != second
        assert hasher.verify(STRONG_PASSWORD, first)
        assert hasher.verify(STRONG_PASSWORD, second)

    def test_cost_factor_is_embedded(self, hasher):
        hashed = hasher.hash(STRONG_PASSWORD)
        assert hashed.startswith(f"$2b${TEST_BCRYPT_ROUNDS:02d}$")
        assert hasher.rounds == TEST_BCRYPT_ROUNDS

    @pytest.mark.parametrize(
        "bad_hash",
        ["", "not-a-bcrypt-hash", "$2b$04$truncated", "plaintext-password"],
    )
    def test_malformed_hash_returns_false(self, hasher, bad_hash):
        """verify() never raises on a corrupted stored hash."""
        assert hasher.verify(STRONG_PASSWORD, bad_hash) is False

    def test_over_long_plaintext_does_not_verify(self, hasher):
        hashed = hasher.hash(STRONG_PASSWORD)
        assert hasher.verify(STRONG_PASSWORD + "x" * BCRYPT_MAX_BYTES, hashed) is False

    def test_hash_rejects_over_long_plaintext(self, hasher):
        with pytest.raises(WeakPasswordError):
            hasher.hash("Aa1!" + "x" * BCRYPT_MAX_BYTES)

    def test_dummy_verify_does_not_raise(self, hasher):
        hasher.dummy_verify(STRONG_PASSWORD)
        hasher.dummy_verify("")


class TestUnencodableText:
    """Lone surrogates are valid in a Python str but have no UTF-8 form."""

    LONE_SURROGATE = "Str0ng!Pass\ud800"

    def test_strength_check_reports_a_failure(self):
        failures = password_strength_failures(self.LONE_SURROGATE)
        assert "Password must be valid Unicode text" in failures

    def test_validate_raises_weak_password(self):
        with pytest.raises(WeakPasswordError):
            validate_password_strength(self.LONE_SURROGATE)

    def test_hash_raises_weak_password(self, hasher):
        with pytest.raises(WeakPasswordError):
            hasher.hash(self.LONE_SURROGATE)

    def test_verify_returns_false(self, hasher):
        hashed = hasher.hash(STRONG_PASSWORD)
        assert hasher.verify(self.LONE_SURROGATE, hashed) is False
        assert hasher.verify(STRONG_PASSWORD, "$2b$04$\udfff") is False

    def test_dummy_verify_does_not_raise(self, hasher):
        hasher.dummy_verify(self.LONE_SURROGATE)

    def test_utf8_bytes(self):
        assert utf8_bytes("€") == "€".encode()
        assert utf8_bytes("\ud800") is None
