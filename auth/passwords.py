"""
auth/passwords.py -- Password hashing and password-strength policy.

Hashing: bcrypt directly (no passlib wrapper). bcrypt is slow, salted, and
adaptive; the cost factor is fixed when the hasher is constructed. passlib's
internal wrap-bug detection creates a password longer than 72 bytes, which
bcrypt 4.x rejects, so it is not used.

verify() returns False for every failure -- mismatch, malformed hash, empty
hash -- and never raises. Callers cannot tell failure classes apart by
exception type.

Policy: PasswordPolicy.check() runs its rules in a fixed order (length,
uppercase, lowercase, digit, symbol) and returns the first failing rule, or
None. Only registration applies the policy; login never does, so tightening
the policy does not lock out existing users.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass

import bcrypt

logger = logging.getLogger("mediashare.auth.passwords")

DEFAULT_ROUNDS = 12


class PasswordHasher:
    """bcrypt hasher with a cost factor fixed at construction.

    Usage:
        hasher = PasswordHasher()
        stored = hasher.hash("Passw0rd!")
        hasher.verify("Passw0rd!", stored)   # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Login verifies against this when
        # the identifier matches no user so an unknown identifier costs the
        # same bcrypt work as a wrong password.
        self.dummy_hash: str = self.hash("mediashare_timing_dummy")

    def hash(self, password: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        if not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed or non-bcrypt hash. The hash itself is not logged.
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False


@dataclass(frozen=True)
class PolicyViolation:
    rule: str  # "length", "uppercase", "lowercase", "digit", "symbol"
    message: str


@dataclass(frozen=True)
class PasswordPolicy:
    """Ordered password-strength rules.

    Length is measured in UTF-8 bytes for the upper bound (that is what
    bcrypt truncates on) and in characters for the lower bound.
    """

    min_length: int = 8
    max_length: int = 72
    require_upper: bool = True
    require_lower: bool = True
    require_digit: bool = True
    require_symbol: bool = True

    def check(self, password: str) -> PolicyViolation | None:
        """Return the first failing rule, or None if the password passes."""
        if len(password) < self.min_length:
            return PolicyViolation("length", f"Password must be at least {self.min_length} characters long.")
        if len(password.encode("utf-8")) > self.max_length:
            return PolicyViolation("length", f"Password must be at most {self.max_length} bytes long.")
        if self.require_upper and not any(ch.isupper() for ch in password):
            return PolicyViolation("uppercase", "Password must contain at least one uppercase letter.")
        if self.require_lower and not any(ch.islower() for ch in password):
            return PolicyViolation("lowercase", "Password must contain at least one lowercase letter.")
        if self.require_digit and not any(_is_number(ch) for ch in password):
            return PolicyViolation("digit", "Password must contain at least one number.")
        if self.require_symbol and not any(_is_symbol(ch) for ch in password):
            return PolicyViolation("symbol", "Password must contain at least one special character.")
        return None


def _is_number(ch: str) -> bool:
    return unicodedata.category(ch).startswith("N")


def _is_symbol(ch: str) -> bool:
    # Unicode punctuation (P*) and symbol (S*) categories
    return unicodedata.category(ch)[0] in ("P", "S")
