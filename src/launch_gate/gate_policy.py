# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
from dataclasses import dataclass

# ─── Project imports ───
from .config import Config


@dataclass(frozen=True)
class GatePolicy:
    """
    Timing policy for launch routing and the notification prompt.

    Encodes how long the gate is willing to wait and how often it may
    ask the user, not how the network or the OS behave.
    """

    # ─── Routing ───

    # Delay between a declined/failed config request and the MAIN_APP fallback
    fallback_delay_s: float = 2.0

    # ─── Notification prompt ───

    # Minimum age of the last denial before the prompt may be shown again
    permission_cooldown_s: int = 3 * 24 * 3600  # 3 days

    # ─── Derived policy values (computed) ───

    @property
    def permission_cooldown_days(self) -> float:
        return self.permission_cooldown_s / 86400

    def validate(self) -> None:
        """
        Reject values that cannot route correctly.

        Raises:
            ValueError: non-positive fallback delay or negative cooldown.
        """
        if self.fallback_delay_s <= 0:
            raise ValueError(
                f"fallback_delay_s must be positive, got {self.fallback_delay_s}"
            )
        if self.permission_cooldown_s < 0:
            raise ValueError(
                f"permission_cooldown_s must be >= 0, got {self.permission_cooldown_s}"
            )

    # ─── Introspection / debugging helpers ───────────────────────────────

    def summary(self) -> dict[str, int | float]:
        """
        Return the effective policy values for startup diagnostics.
        """
        return {
            "fallback_delay_s": self.fallback_delay_s,
            "permission_cooldown_s": self.permission_cooldown_s,
            "permission_cooldown_days": self.permission_cooldown_days,
        }

# Global singleton instance
gate_policy = GatePolicy(
    fallback_delay_s=Config.FALLBACK_DELAY_S,
    permission_cooldown_s=Config.PERMISSION_COOLDOWN_S,
)
