"""
auth/passwords.py -- Password hashing and password policy.

Hashing uses bcrypt directly (no passlib wrapper). passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt embeds a per-hash random salt and its cost factor in the hash string,
so one column holds everything needed to verify. bcrypt.checkpw compares in
constant time.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import WeakPassword

# bcrypt only looks at the first 72 bytes; longer inputs are rejected instead
# of being silently truncated.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A corrupt hash or an over-long password is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def check_password_policy(password: str, identity: str, min_length: int) -> None:
    """Raise WeakPassword naming the first rule the password breaks."""
    if len(password) < min_length:
        raise WeakPassword(f"Password must be at least {min_length} characters.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    if not any(c.isalpha() for c in password) or all(c.isalpha() for c in password):
        raise WeakPassword("Password must mix letters with digits or symbols.")
    local_part = identity.split("@", 1)[0].lower()
    if len(local_part) >= 3 and local_part in password.lower():
        raise WeakPassword("Password must not contain your identity.")
