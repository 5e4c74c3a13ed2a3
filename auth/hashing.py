"""
auth/hashing.py -- bcrypt password hashing with timing equalization.

Uses bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects outright.

Every hash() call draws a fresh salt, so two digests of the same password are
never equal -- only verify() decides a match. checkpw compares in constant
time.

The dummy digest lets login spend the same bcrypt work on an unknown email as
on a known one, so response time does not reveal which emails are registered.
It is computed once, when the hasher is built and with its own cost factor,
so the first failed login is not measurably slower than later ones.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12


class PasswordHasher:
    """Salted, cost-tunable one-way hash for low-entropy secrets.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("Passw0rd!")
        hasher.verify("Passw0rd!", digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, secret: str) -> str:
        """Return a bcrypt digest of secret.

        Input beyond 72 bytes is ignored by bcrypt; the password policy in
        auth/validation.py caps length well before that.
        """
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, digest: str) -> bool:
        """Return True if secret matches digest. False for any malformed digest."""
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, secret: str) -> bool:
        """Spend one verify's worth of work against a throwaway digest. Always False."""
        self.verify(secret, self._dummy_hash)
        return False
