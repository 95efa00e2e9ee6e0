# ─── Standard library imports ───
import queue
import threading
from enum import Enum, auto
from typing import Callable, Optional, Protocol
from dataclasses import dataclass

# ─── Project imports ───
from .telemetry import tlog
from .logger import get_logger
from .gate_state import PersistedGateState
from .gate_policy import GatePolicy, gate_policy
from .connectivity import ConnectivitySource
from .permission import NotificationPermissionGate
from .remote_config import ConfigOutcome, ConfigVerdict, RemoteConfigClient


class RoutingPhase(Enum):
    """
    Launch pipeline phases.

    • AWAITING_DATA: waiting for conversion data
    • AWAITING_PERMISSION_DECISION: notification prompt on screen
    • FETCHING_CONFIG: config request in flight or fallback armed
    • ROUTED: terminal for this launch
    """
    AWAITING_DATA = auto()
    AWAITING_PERMISSION_DECISION = auto()
    FETCHING_CONFIG = auto()
    ROUTED = auto()

    def __str__(self) -> str:
        return self.name

class Destination(Enum):
    MAIN_APP = auto()
    WEB_OVERLAY = auto()
    PERMISSION_PROMPT = auto()
    OFFLINE = auto()

    def __str__(self) -> str:
        return self.name

DESTINATION_EMOJI = {
    Destination.MAIN_APP:          "🏠",
    Destination.WEB_OVERLAY:       "🌐",
    Destination.PERMISSION_PROMPT: "🔔",
    Destination.OFFLINE:           "📵",
}

@dataclass(frozen=True)
class RoutingDecision:
    destination: Destination
    url: Optional[str] = None

    @classmethod
    def main_app(cls) -> "RoutingDecision":
        return cls(Destination.MAIN_APP)

    @classmethod
    def web_overlay(cls, url: str) -> "RoutingDecision":
        return cls(Destination.WEB_OVERLAY, url=url)

    @classmethod
    def permission_prompt(cls) -> "RoutingDecision":
        return cls(Destination.PERMISSION_PROMPT)

    @classmethod
    def offline(cls) -> "RoutingDecision":
        return cls(Destination.OFFLINE)

    def __str__(self) -> str:
        return f"{self.destination}({self.url})" if self.url else str(self.destination)


# ─── Events ───

@dataclass(frozen=True)
class ConnectivityChanged:
    disconnected: bool

@dataclass(frozen=True)
class ConversionDataReady:
    pass

@dataclass(frozen=True)
class PermissionResult:
    granted: bool

@dataclass(frozen=True)
class ConfigResolved:
    outcome: ConfigOutcome

@dataclass(frozen=True)
class FallbackElapsed:
    pass

@dataclass(frozen=True)
class DeepLinkOpened:
    url: str

@dataclass(frozen=True)
class DeepLinkDismissed:
    pass

_STOP = object()


# ─── Scheduling ───

class Scheduler(Protocol):
    """Runs work off the decision thread."""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> None: ...

    def submit(self, fn: Callable[[], None]) -> None: ...

class ThreadScheduler:
    """
    Daemon-thread scheduler: timers via threading.Timer, jobs via threads.
    """

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> None:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()

    def submit(self, fn: Callable[[], None]) -> None:
        threading.Thread(target=fn, name="ConfigRequest", daemon=True).start()


class RoutingStateMachine:
    """
    Launch-time router.

    Owns the single active destination for one launch. Every input
    (connectivity, conversion data, permission result, config result,
    fallback timer, deep links) arrives as an event on one queue and is
    applied on one decision thread, in arrival order, except that a
    disconnect always goes first.

    Invariants:
      • OFFLINE pre-empts everything and is sticky for the launch
      • Conversion data is handled once; repeats are no-ops
      • At most one permission prompt and one config request per launch
      • The MAIN_APP fallback never fires before the fallback delay
      • A deep-link overlay sits on top of the base route and is never
        replaced by a config result
    """

    def __init__(
        self,
        state: PersistedGateState,
        connectivity: ConnectivitySource,
        config_client: RemoteConfigClient,
        permission_gate: NotificationPermissionGate,
        scheduler: Scheduler | None = None,
        policy: GatePolicy = gate_policy,
    ):
        self.logger = get_logger("routing")

        # ─── Dependencies ───
        self.state = state
        self.connectivity = connectivity
        self.config_client = config_client
        self.permission_gate = permission_gate
        self.scheduler = scheduler or ThreadScheduler()
        self.policy = policy

        # ─── Routing state (one launch) ───
        self.phase: RoutingPhase = RoutingPhase.AWAITING_DATA
        self.base: Optional[RoutingDecision] = None
        self.overlay_url: Optional[str] = None

        # ─── Launch guards ───
        self._conversion_handled = False
        self._fallback_armed = False
        self._suppressed_by_overlay = False
        self.config_requests = 0
        self.prompts_shown = 0

        # ─── Event plumbing ───
        self._events: "queue.Queue[object]" = queue.Queue()
        self._listeners: list[Callable[[Optional[RoutingDecision]], None]] = []
        self._routed = threading.Event()
        self._thread: Optional[threading.Thread] = None

        connectivity.subscribe(
            lambda disconnected: self.post(ConnectivityChanged(disconnected))
        )
        if connectivity.disconnected:
            self.post(ConnectivityChanged(True))

    # ──────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────

    @property
    def active(self) -> Optional[RoutingDecision]:
        """The destination on screen: the overlay if any, else the base route."""
        if self.overlay_url is not None:
            return RoutingDecision.web_overlay(self.overlay_url)
        return self.base

    @property
    def is_routed(self) -> bool:
        return self.phase == RoutingPhase.ROUTED

    def add_listener(self, callback: Callable[[Optional[RoutingDecision]], None]) -> None:
        self._listeners.append(callback)

    def post(self, event: object) -> None:
        """Queue an event; safe from any thread."""
        self._events.put(event)

    def drain(self) -> int:
        """
        Apply every queued event on the calling thread.

        Returns:
            Number of events applied.
        """
        processed = 0
        while True:
            batch = self._take_pending()
            if not batch:
                return processed
            for event in self._prioritize(batch):
                if event is _STOP:
                    continue
                self._process(event)
                processed += 1

    def start(self) -> None:
        """Run the decision loop on a daemon thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.run, name="RoutingStateMachine", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.post(_STOP)
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def run(self) -> None:
        """
        Blocking decision loop. Returns after stop().
        """
        while True:
            batch = [self._events.get()]
            batch.extend(self._take_pending())
            for event in self._prioritize(batch):
                if event is _STOP:
                    return
                try:
                    self._process(event)
                except Exception:
                    self.logger.exception(f"Unhandled error applying {event!r}")

    def wait_until_routed(self, timeout: float | None = None) -> bool:
        return self._routed.wait(timeout)

    # ──────────────────────────────────────────────────────────────
    # Event loop internals
    # ──────────────────────────────────────────────────────────────

    def _take_pending(self) -> list:
        batch = []
        while True:
            try:
                batch.append(self._events.get_nowait())
            except queue.Empty:
                return batch

    @staticmethod
    def _prioritize(batch: list) -> list:
        # Disconnects first, everything else keeps arrival order
        return sorted(
            batch,
            key=lambda e: 0 if isinstance(e, ConnectivityChanged) and e.disconnected else 1,
        )

    def _process(self, event: object) -> None:
        self.logger.debug(f"Event {event!r} [phase={self.phase}]")

        if isinstance(event, ConnectivityChanged):
            self._on_connectivity(event)
            return

        if isinstance(event, DeepLinkOpened):
            self._on_deep_link(event)
            return

        if isinstance(event, DeepLinkDismissed):
            self._on_deep_link_dismissed()
            return

        # Interrupt check before any base-route transition
        if self._preempted():
            self._go_offline()

        if self._is_offline():
            self.logger.debug(f"Ignoring {type(event).__name__} while offline")
            return

        if isinstance(event, ConversionDataReady):
            self._on_conversion_ready()
        elif isinstance(event, PermissionResult):
            self._on_permission_result(event)
        elif isinstance(event, ConfigResolved):
            self._on_config_resolved(event.outcome)
        elif isinstance(event, FallbackElapsed):
            self._on_fallback_elapsed()
        else:
            self.logger.warning(f"Unknown routing event {event!r}")

    # ──────────────────────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────────────────────

    def _on_connectivity(self, event: ConnectivityChanged) -> None:
        if event.disconnected:
            self._go_offline()
        elif self._is_offline():
            # Sticky: reconnection does not resume the pipeline
            tlog(self.logger, "🟡", "ROUTING", "RECONNECTED", primary="offline is sticky")

    def _on_conversion_ready(self) -> None:
        if self._conversion_handled or self.phase != RoutingPhase.AWAITING_DATA:
            self.logger.info("Conversion event ignored; already handled")
            return
        self._conversion_handled = True

        if self.state.is_organic():
            tlog(self.logger, "🟢", "CONVERSION", "ORGANIC", primary="skip config")
            self._commit(RoutingDecision.main_app())
            return

        tlog(self.logger, "🟡", "CONVERSION", "ATTRIBUTED")
        self._evaluate_permission()

    def _evaluate_permission(self) -> None:
        if not self.permission_gate.evaluate():
            self._fetch_config()
            return

        self._set_phase(RoutingPhase.AWAITING_PERMISSION_DECISION)
        self.base = RoutingDecision.permission_prompt()
        self.prompts_shown += 1
        self._notify()
        self.permission_gate.request_authorization(
            lambda granted: self.post(PermissionResult(granted))
        )

    def _on_permission_result(self, event: PermissionResult) -> None:
        if self.phase != RoutingPhase.AWAITING_PERMISSION_DECISION:
            self.logger.debug("Permission result outside prompt; ignoring")
            return

        if not event.granted:
            # Denial record only feeds the cooldown; never block routing on it
            try:
                self.permission_gate.record_denial()
            except OSError:
                self.logger.exception("Failed to persist notification denial")
        else:
            tlog(self.logger, "🟢", "PERMISSION", "GRANTED")

        self.base = None
        self._notify()
        self._fetch_config()

    def _fetch_config(self) -> None:
        self._set_phase(RoutingPhase.FETCHING_CONFIG)
        self.config_requests += 1
        self.scheduler.submit(self._request_config)

    def _request_config(self) -> None:
        # Runs on a worker thread; result comes back as an event
        try:
            outcome = self.config_client.request_config()
        except Exception:
            self.logger.exception("Config request crashed; treating as failed")
            outcome = ConfigOutcome.failed()
        self.post(ConfigResolved(outcome))

    def _on_config_resolved(self, outcome: ConfigOutcome) -> None:
        if self.phase != RoutingPhase.FETCHING_CONFIG or self._fallback_armed:
            self.logger.debug("Config result arrived after routing; ignoring")
            return

        if outcome.verdict == ConfigVerdict.GRANTED:
            if self.overlay_url is not None:
                tlog(
                    self.logger,
                    "🟡",
                    "ROUTING",
                    "SUPPRESSED",
                    primary=f"url={outcome.url}",
                    meta="deep link is authoritative",
                )
                self._suppressed_by_overlay = True
                self._set_phase(RoutingPhase.ROUTED)
                self._routed.set()
                return
            self._commit(RoutingDecision.web_overlay(outcome.url))
            return

        self._fallback_armed = True
        tlog(
            self.logger,
            "🟡",
            "ROUTING",
            "FALLBACK_ARMED",
            primary=f"verdict={outcome.verdict.name}",
            meta={"delay": f"{self.policy.fallback_delay_s}s"},
        )
        self.scheduler.call_later(
            self.policy.fallback_delay_s,
            lambda: self.post(FallbackElapsed()),
        )

    def _on_fallback_elapsed(self) -> None:
        if self.is_routed:
            return

        if self.overlay_url is not None:
            tlog(self.logger, "🟡", "ROUTING", "SUPPRESSED", primary="fallback", meta="deep link is authoritative")
            self._suppressed_by_overlay = True
            self._set_phase(RoutingPhase.ROUTED)
            self._routed.set()
            return

        self._commit(RoutingDecision.main_app())

    def _on_deep_link(self, event: DeepLinkOpened) -> None:
        self.overlay_url = event.url
        tlog(self.logger, "🌐", "DEEP_LINK", "OPENED", primary=f"url={event.url}")
        self._notify()

    def _on_deep_link_dismissed(self) -> None:
        if self.overlay_url is None:
            return
        self.overlay_url = None
        tlog(self.logger, "⚪", "DEEP_LINK", "DISMISSED")

        # Base route was left empty while the overlay had priority
        if self._suppressed_by_overlay and self.base is None and not self._is_offline():
            self._suppressed_by_overlay = False
            self._commit(RoutingDecision.main_app())
            return
        self._notify()

    # ──────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────

    def _preempted(self) -> bool:
        return self.connectivity.disconnected and not self._is_offline()

    def _is_offline(self) -> bool:
        return self.base is not None and self.base.destination == Destination.OFFLINE

    def _go_offline(self) -> None:
        if self._is_offline():
            return
        self._commit(RoutingDecision.offline(), checked=True)

    def _set_phase(self, phase: RoutingPhase) -> None:
        if phase != self.phase:
            self.logger.debug(f"Phase {self.phase} → {phase}")
        self.phase = phase

    def _commit(self, decision: RoutingDecision, checked: bool = False) -> None:
        """
        Enter ROUTED with `decision` as the base route.

        A live disconnect wins over any other decision.
        """
        if not checked and self.connectivity.disconnected:
            decision = RoutingDecision.offline()

        prev = self.base
        self.base = decision
        self._set_phase(RoutingPhase.ROUTED)
        self._routed.set()

        tlog(
            self.logger,
            DESTINATION_EMOJI[decision.destination],
            "ROUTING",
            "ROUTED",
            primary=f"{prev or 'LAUNCH'} → {decision}",
            meta=f"overlay={self.overlay_url}" if self.overlay_url else None,
        )
        self._notify()

    def _notify(self) -> None:
        active = self.active
        for callback in self._listeners:
            callback(active)
