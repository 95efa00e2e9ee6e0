# --- Standard library imports ---
import sys
import logging

# --- Project imports ---
from .config import Config


# Every logger handed out lives under this namespace
LOGGER_NAMESPACE = "launch_gate"

# --- Custom log levels ---
TIMING = 25   # Config round-trips; between INFO (20) and WARNING (30)
logging.addLevelName(TIMING, "TIME")

def timing(self, message, *args, **kwargs):
    if self.isEnabledFor(TIMING):
        self._log(TIMING, message, args, stacklevel=2, **kwargs)

logging.Logger.timing = timing

# Third-party loggers that chatter at INFO on every config POST
QUIET_LIBRARIES = ("urllib3",)

LEVEL_EMOJIS = {
    logging.DEBUG: "🧱",
    logging.INFO: "🟢",
    TIMING: "⏱️ ",
    logging.WARNING: "⚠️ ",
    logging.ERROR: "❌",
    logging.CRITICAL: "🔥",
}

SHORT_LEVEL_NAMES = {
    "WARNING": "WARN",
    "CRITICAL": "FATAL",
}

# Router, connectivity probe and config request each run on their own thread
LOG_FORMAT = "%(asctime)s %(levelemoji)s [%(threadName)s] %(gate_name)s:%(funcName)s → %(message)s"


class TimingFilter(logging.Filter):
    """Drop TIMING records unless config round-trip logging is on."""
    def __init__(self, enabled: bool):
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno == TIMING:
            return self.enabled
        return True

class GateFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelemoji = LEVEL_EMOJIS.get(record.levelno, "")
        record.levelname = SHORT_LEVEL_NAMES.get(record.levelname, record.levelname)
        # launch_gate.routing -> routing; foreign loggers keep their full name
        prefix = f"{LOGGER_NAMESPACE}."
        record.gate_name = (
            record.name[len(prefix):] if record.name.startswith(prefix) else record.name
        )
        return super().format(record)


def resolve_level(level: int | str) -> int:
    """
    Accept a numeric level or a name such as 'debug' / 'TIME'.

    Unknown names fall back to INFO rather than failing the launch.
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO

def setup_logging(level: int | str | None = None, timing_enabled: bool | None = None) -> None:
    """
    Configure root logging for the launch gate.

    Level and TIMING visibility default to Config.LOG_LEVEL and
    Config.LOG_TIMING. HTTP library loggers are held at WARNING so
    gate telemetry is not buried under connection-pool lines.
    """
    if level is None:
        level = Config.LOG_LEVEL
    if timing_enabled is None:
        timing_enabled = Config.LOG_TIMING

    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(GateFormatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
    handler.addFilter(TimingFilter(enabled=timing_enabled))
    root.addHandler(handler)

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
