# --- Standard library imports ---
import os
import json
import threading
from pathlib import Path
from typing import Any, Optional
from dataclasses import dataclass

# --- Project imports ---
from .config import Config
from .logger import get_logger


logger = get_logger("gate_state")

# --- Persisted keys ---
CONVERSION_DATA_KEY = "conversion_data"
PUSH_TOKEN_KEY = "push_token"
AF_ID_KEY = "af_id"
LAST_DENIED_KEY = "last_notification_denied_at"
CONFIG_URL_KEY = "config_url"
CONFIG_EXPIRES_KEY = "config_expires"
CONFIG_NO_MORE_REQUESTS_KEY = "config_no_more_requests"

# Conversion blob flag marking a non-attributed install
ORGANIC_FLAG_KEY = "is_organic_conversion"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)

@dataclass(frozen=True)
class GateConfig:
    """
    Cached result of the last successful config fetch.

    Presence says nothing about validity; check `is_fresh(now)`.
    """
    url: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at

class PersistedGateState:
    """
    Durable key-value store backing the launch gate.

    One JSON document on local disk. Every write is a locked
    read-modify-write of a single key, replaced atomically on disk,
    so a key is never half-written. There is no cross-key transaction:
    a crash between two writes leaves the first one in place.

    A missing or corrupt document reads as empty and every accessor
    falls back to its default.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else Config.STATE_FILE
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # ─── Raw document access ───

    def _load(self) -> dict:
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(
                f"Gate state unreadable ({type(e).__name__}); treating as empty"
            )
            return {}

        if not isinstance(data, dict):
            logger.warning("Gate state is not a JSON object; treating as empty")
            return {}
        return data

    def _write(self, data: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._write(data)

    def snapshot(self) -> dict:
        """Return a copy of every persisted key (for status output)."""
        with self._lock:
            return dict(self._load())

    # ─── Conversion record (written by the attribution collaborator) ───

    def conversion_record(self) -> Optional[dict]:
        record = self.get(CONVERSION_DATA_KEY)
        if isinstance(record, dict):
            return record
        if record is not None:
            logger.warning("Stored conversion data is not a JSON object; ignoring")
        return None

    def store_conversion_record(self, record: dict) -> None:
        self.set(CONVERSION_DATA_KEY, record)

    def is_organic(self) -> bool:
        record = self.conversion_record()
        return bool(record) and record.get(ORGANIC_FLAG_KEY) is True

    # ─── Push / attribution identifiers ───

    def push_token(self) -> str:
        return self.get(PUSH_TOKEN_KEY) or ""

    def store_push_token(self, token: str) -> None:
        self.set(PUSH_TOKEN_KEY, token)

    def attribution_id(self) -> str:
        return self.get(AF_ID_KEY) or ""

    def store_attribution_id(self, af_id: str) -> None:
        self.set(AF_ID_KEY, af_id)

    # ─── Notification denial record ───

    def last_denied_at(self) -> Optional[float]:
        value = self.get(LAST_DENIED_KEY)
        return float(value) if _is_number(value) else None

    def store_last_denied_at(self, ts: float) -> None:
        self.set(LAST_DENIED_KEY, ts)

    # ─── Cached config ───

    def gate_config(self) -> Optional[GateConfig]:
        """
        Return the cached config as stored, fresh or not.

        Both keys must be present and well-typed, otherwise None.
        """
        data = self.snapshot()
        url = data.get(CONFIG_URL_KEY)
        expires = data.get(CONFIG_EXPIRES_KEY)
        if not isinstance(url, str) or not _is_number(expires):
            return None
        return GateConfig(url=url, expires_at=float(expires))

    def fresh_gate_config(self, now: float) -> Optional[GateConfig]:
        cfg = self.gate_config()
        if cfg is None or not cfg.is_fresh(now):
            return None
        return cfg

    def store_gate_config(self, cfg: GateConfig) -> None:
        # Two independent writes
        self.set(CONFIG_URL_KEY, cfg.url)
        self.set(CONFIG_EXPIRES_KEY, cfg.expires_at)

    # ─── Circuit breaker ───

    def config_requests_disabled(self) -> bool:
        return self.get(CONFIG_NO_MORE_REQUESTS_KEY) is True

    def disable_config_requests(self) -> None:
        self.set(CONFIG_NO_MORE_REQUESTS_KEY, True)

    def clear_config_breaker(self) -> None:
        self.remove(CONFIG_NO_MORE_REQUESTS_KEY)
