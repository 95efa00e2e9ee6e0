# ─── Standard library imports ───
import time
from enum import Enum, auto
from typing import Callable, Protocol

# ─── Project imports ───
from .telemetry import tlog
from .logger import get_logger
from .gate_state import PersistedGateState
from .gate_policy import GatePolicy, gate_policy


class AuthorizationStatus(Enum):
    """
    OS-reported notification authorization status.
    """
    NOT_DETERMINED = auto()
    DENIED = auto()
    AUTHORIZED = auto()
    PROVISIONAL = auto()
    EPHEMERAL = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name

class PermissionProvider(Protocol):
    """OS notification permission API."""

    def authorization_status(self) -> AuthorizationStatus: ...

    def request_authorization(self, on_result: Callable[[bool], None]) -> None: ...

class StaticPermissionProvider:
    """
    Provider with a fixed status and a pre-decided answer.

    Stands in for the OS API on hosts without one (CLI runs).
    """

    def __init__(self, status: AuthorizationStatus, grant: bool = False):
        self.status = status
        self.grant = grant
        self.requests = 0

    def authorization_status(self) -> AuthorizationStatus:
        return self.status

    def request_authorization(self, on_result: Callable[[bool], None]) -> None:
        self.requests += 1
        self.status = (
            AuthorizationStatus.AUTHORIZED if self.grant else AuthorizationStatus.DENIED
        )
        on_result(self.grant)

class NotificationPermissionGate:
    """
    Decides whether to show the notification prompt on this launch.

    • Only users with an undecided OS status are ever asked
    • A recorded denial blocks the prompt for the cooldown window
    • The gate never asks twice for the same denial inside that window
    """

    def __init__(
        self,
        state: PersistedGateState,
        provider: PermissionProvider,
        policy: GatePolicy = gate_policy,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = get_logger("permission")
        self.state = state
        self.provider = provider
        self.policy = policy
        self.clock = clock

    def authorization_status(self) -> AuthorizationStatus:
        return self.provider.authorization_status()

    def should_prompt(self, now: float | None = None) -> bool:
        """
        True if never denied, or the last denial is strictly older
        than the cooldown window.
        """
        now = self.clock() if now is None else now
        last_denied = self.state.last_denied_at()
        if last_denied is None:
            return True
        return last_denied < now - self.policy.permission_cooldown_s

    def evaluate(self) -> bool:
        """
        Combine OS status and cooldown into one prompt decision.

        Any status other than NOT_DETERMINED bypasses the cooldown check.
        """
        status = self.authorization_status()
        if status != AuthorizationStatus.NOT_DETERMINED:
            tlog(self.logger, "⚪", "PERMISSION", "BYPASS", primary=f"status={status}")
            return False

        prompt = self.should_prompt()
        tlog(
            self.logger,
            "🟡" if prompt else "⚪",
            "PERMISSION",
            "PROMPT" if prompt else "COOLDOWN",
            primary=f"status={status}",
        )
        return prompt

    def request_authorization(self, on_result: Callable[[bool], None]) -> None:
        self.provider.request_authorization(on_result)

    def record_denial(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        self.state.store_last_denied_at(now)
        tlog(self.logger, "🔴", "PERMISSION", "DENIED", primary=f"at={now:.0f}")
