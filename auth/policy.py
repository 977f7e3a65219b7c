"""
auth/policy.py -- Minimum-strength policy for new secrets.

The policy is configuration (PASSWORD_MIN_LENGTH, PASSWORD_REQUIRE_*), not a
hard-coded rule set. It runs on registration and on change_secret, never on
login -- an existing secret that predates a stricter policy must still be
able to sign in and be changed.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.errors import WeakSecret


@dataclass(frozen=True)
class SecretPolicy:
    min_length: int = 8
    require_upper: bool = True
    require_lower: bool = True
    require_digit: bool = True
    require_symbol: bool = False

    @classmethod
    def from_settings(cls, settings) -> SecretPolicy:
        return cls(
            min_length=settings.password_min_length,
            require_upper=settings.password_require_upper,
            require_lower=settings.password_require_lower,
            require_digit=settings.password_require_digit,
            require_symbol=settings.password_require_symbol,
        )

    def violations(self, plaintext: str) -> list[str]:
        """Return the names of the rules plaintext fails (empty list = acceptable)."""
        failed: list[str] = []
        if len(plaintext) < self.min_length:
            failed.append("min_length")
        if self.require_upper and not any(c.isupper() for c in plaintext):
            failed.append("upper")
        if self.require_lower and not any(c.islower() for c in plaintext):
            failed.append("lower")
        if self.require_digit and not any(c.isdigit() for c in plaintext):
            failed.append("digit")
        if self.require_symbol and all(c.isalnum() for c in plaintext):
            failed.append("symbol")
        return failed

    def check(self, plaintext: str) -> None:
        """Raise WeakSecret listing every unmet rule."""
        failed = self.violations(plaintext)
        if failed:
            raise WeakSecret(detail=failed)
