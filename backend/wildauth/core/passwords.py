"""Password hashing and strength policy.

SecretHasher wraps bcrypt with a configurable cost factor. The strength
policy requires all four character classes plus a minimum length, and caps
the UTF-8 length at bcrypt's 72-byte input limit so nothing is silently
truncated.
"""

import logging
import re

import bcrypt

from wildauth.core.config import DEFAULT_BCRYPT_ROUNDS
from wildauth.core.errors import WeakPasswordError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

# bcrypt only reads the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

_SPECIAL_CHARACTER = re.compile(r"[^A-Za-z0-9\s]")

# Plaintext for the timing-equalisation hash; never a real credential
_DUMMY_PLAINTEXT = b"wildauth-dummy-password"  # nosec B105


def utf8_bytes(text: str) -> bytes | None:
    """Encode text as UTF-8, or None if it holds lone surrogates."""
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        return None


def password_strength_failures(password: str) -> list[str]:
    """Return every strength rule the password fails.

    Rules: at least 8 characters, at most 72 UTF-8 bytes, and at least one
    uppercase letter, one lowercase letter, one digit and one special
    character. All four character classes are mandatory.

    Args:
        password: Plain-text password to check.

    Returns:
        Failure messages in policy order; empty when the password passes.
    """
    failures: list[str] = []
    encoded = utf8_bytes(password)
    if len(password) < MIN_PASSWORD_LENGTH:
        failures.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if encoded is None:
        failures.append("Password must be valid Unicode text")
    elif len(encoded) > BCRYPT_MAX_BYTES:
        failures.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    if not re.search(r"[A-Z]", password):
        failures.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        failures.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        failures.append("Password must contain at least one number")
    if not _SPECIAL_CHARACTER.search(password):
        failures.append("Password must contain at least one special character")
    return failures


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    Args:
        password: Plain-text password to validate.

    Raises:
        WeakPasswordError: Listing every failed rule.
    """
    failures = password_strength_failures(password)
    if failures:
        raise WeakPasswordError(failures)


class SecretHasher:
    """One-way salted password hashing with bcrypt.

    The cost factor is a constructor argument (wired from
    ``settings.bcrypt_rounds``) rather than a literal at the call site, so
    tests can run with the minimum cost.
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._rounds = rounds
        self._dummy_hash: bytes | None = None

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, plaintext: str) -> str:
        """Hash a password with a fresh salt.

        Args:
            plaintext: Password to hash.

        Returns:
            bcrypt hash string with the salt and cost embedded.

        Raises:
            WeakPasswordError: If the password exceeds bcrypt's 72-byte limit
                or cannot be encoded as UTF-8.
        """
        encoded = utf8_bytes(plaintext)
        if encoded is None:
            raise WeakPasswordError(["Password must be valid Unicode text"])
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise WeakPasswordError(
                [f"Password must be at most {BCRYPT_MAX_BYTES} bytes"]
            )
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self._rounds)).decode()

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Check a password against a stored hash.

        Never raises: a malformed or corrupted hash, or an over-long or
        unencodable plaintext, is treated as a non-match.

        Args:
            plaintext: Candidate password.
            hashed: Stored bcrypt hash.

        Returns:
            True if the password matches, False otherwise.
        """
        encoded = utf8_bytes(plaintext)
        if encoded is None or not hashed or len(encoded) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except (ValueError, TypeError):
            logger.warning("Stored password hash is malformed")
            return False

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one verification's worth of time without a real hash.

        Called on the user-not-found path so response time does not reveal
        whether an account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(
                _DUMMY_PLAINTEXT, bcrypt.gensalt(rounds=self._rounds)
            )
        encoded = (utf8_bytes(plaintext) or b"")[:BCRYPT_MAX_BYTES]
        bcrypt.checkpw(encoded, self._dummy_hash)
