# --- Standard library imports ---
import socket
import threading
from typing import Callable, Optional, Protocol

# --- Project imports ---
from .config import Config
from .telemetry import tlog
from .logger import get_logger


logger = get_logger("connectivity")

class ConnectivitySource(Protocol):
    """Anything that publishes a connected/disconnected signal."""

    @property
    def disconnected(self) -> bool: ...

    def subscribe(self, callback: Callable[[bool], None]) -> None: ...

def probe_reachability(host: str, port: int = 443, timeout: float = 1.0) -> bool:
    """
    Check WAN reachability with a plain TCP connect.

    Avoids ICMP so no admin privileges are required. Any socket
    error counts as unreachable; the probe itself never raises.
    """
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False

class ConnectivityMonitor:
    """
    Process-wide reachability monitor.

    Probes on a background daemon thread, started on construction, and
    notifies subscribers on every connected/disconnected transition.
    No debounce: a flapping link produces a notification per flip.
    Pass autostart=False to drive it by hand with check_once().
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        interval_s: float | None = None,
        probe: Callable[[], bool] | None = None,
        autostart: bool = True,
    ):
        self.host = host or Config.CONNECTIVITY_HOST
        self.port = port or Config.CONNECTIVITY_PORT
        self.interval_s = interval_s if interval_s is not None else Config.CONNECTIVITY_POLL_S
        self.probe = probe or (lambda: probe_reachability(self.host, self.port))

        self._disconnected = False
        self._subscribers: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if autostart:
            self.start()

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def publish(self, disconnected: bool) -> None:
        """
        Record an observation; notify subscribers if it flipped the state.
        """
        with self._lock:
            if disconnected == self._disconnected:
                return
            self._disconnected = disconnected
            subscribers = list(self._subscribers)

        tlog(
            logger,
            "🔴" if disconnected else "🟢",
            "NETWORK",
            "DOWN" if disconnected else "UP",
            primary=f"dest={self.host}:{self.port}",
        )
        for callback in subscribers:
            callback(disconnected)

    def check_once(self) -> bool:
        """Run one probe, publish it, return the disconnected flag."""
        self.publish(not self.probe())
        return self._disconnected

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="ConnectivityMonitor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_s + 1)
            self._thread = None

    def _run(self) -> None:
        self.check_once()
        while not self._stop.wait(self.interval_s):
            self.check_once()


# Process-wide instance, created by bootstrap
_monitor: Optional[ConnectivityMonitor] = None

def init_connectivity_monitor(**kwargs) -> ConnectivityMonitor:
    """
    Create the process-wide monitor (idempotent); it starts probing at once.
    """
    global _monitor
    if _monitor is None:
        _monitor = ConnectivityMonitor(**kwargs)
    return _monitor

def get_connectivity_monitor() -> ConnectivityMonitor:
    if _monitor is None:
        raise RuntimeError("Connectivity monitor not initialized; call bootstrap() first")
    return _monitor
