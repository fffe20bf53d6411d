"""Centralized password hashing configuration.

All modules that hash or verify member credentials import from here so the
Argon2id parameters stay identical across signup, login and password change.
"""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from standing.errors import CredentialConfigurationError

# Argon2id: 64 MB memory, 3 iterations, 4 lanes
PASSWORD_HASHER = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

_DUMMY_HASH = PASSWORD_HASHER.hash("standing-dummy-credential")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id with the configured parameters."""
    return PASSWORD_HASHER.hash(password)


def verify_password(hash: str, password: str) -> bool:
    """Verify a password against its stored hash.

    Returns False on a mismatch. A stored hash that cannot be parsed is a
    configuration problem, not a failed login, and raises
    ``CredentialConfigurationError``.
    """
    try:
        PASSWORD_HASHER.verify(hash, password)
        return True
    except VerifyMismatchError:
        return False
    except InvalidHashError as exc:
        raise CredentialConfigurationError() from exc
    except VerificationError:
        return False


def verify_dummy(password: str) -> None:
    """Spend the same work as a real verification when no member matched."""
    verify_password(_DUMMY_HASH, password)


def check_needs_rehash(hash: str) -> bool:
    """Return True when the hash was created with different parameters."""
    return PASSWORD_HASHER.check_needs_rehash(hash)
