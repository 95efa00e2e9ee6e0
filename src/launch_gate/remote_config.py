# --- Standard library imports ---
import math
import time
import locale
from enum import Enum, auto
from typing import Any, Callable, Optional
from dataclasses import dataclass

# --- Third-party imports ---
import requests

# --- Project imports ---
from .config import Config
from .telemetry import tlog
from .logger import get_logger
from .gate_state import GateConfig, PersistedGateState


# --- Request payload keys ---
PUSH_TOKEN_FIELD = "push_token"
AF_ID_FIELD = "af_id"
BUNDLE_ID_FIELD = "bundle_id"
OS_FIELD = "os"
STORE_ID_FIELD = "store_id"
LOCALE_FIELD = "locale"
FIREBASE_PROJECT_FIELD = "firebase_project_id"

# --- Response keys ---
OK_FIELD = "ok"
URL_FIELD = "url"
EXPIRES_FIELD = "expires"


class ConfigVerdict(Enum):
    GRANTED = auto()
    DECLINED = auto()
    FAILED = auto()

@dataclass(frozen=True)
class ConfigOutcome:
    """
    Result of one config request.

    Only GRANTED carries a url and expiry.
    """
    verdict: ConfigVerdict
    url: Optional[str] = None
    expires_at: Optional[float] = None

    @classmethod
    def granted(cls, url: str, expires_at: float) -> "ConfigOutcome":
        return cls(ConfigVerdict.GRANTED, url=url, expires_at=expires_at)

    @classmethod
    def declined(cls) -> "ConfigOutcome":
        return cls(ConfigVerdict.DECLINED)

    @classmethod
    def failed(cls) -> "ConfigOutcome":
        return cls(ConfigVerdict.FAILED)

@dataclass(frozen=True)
class ConfigRequest:
    """
    Typed request body: the conversion blob plus the fields we own.
    """
    conversion: dict
    push_token: str
    af_id: str
    bundle_id: str
    os: str
    store_id: str
    locale: str
    firebase_project_id: str

    def to_payload(self) -> dict:
        """
        Merge our fields over the conversion blob.

        On key collision our values win.
        """
        payload = dict(self.conversion)
        payload.update({
            PUSH_TOKEN_FIELD: self.push_token,
            AF_ID_FIELD: self.af_id,
            BUNDLE_ID_FIELD: self.bundle_id,
            OS_FIELD: self.os,
            STORE_ID_FIELD: self.store_id,
            LOCALE_FIELD: self.locale,
            FIREBASE_PROJECT_FIELD: self.firebase_project_id,
        })
        return payload

@dataclass(frozen=True)
class ConfigResponse:
    """
    Typed view of a parsed response object.

    Fields hold None when missing or of the wrong JSON type;
    nothing is coerced (`"true"` is not `true`, `1` is not `true`).
    """
    ok: Optional[bool]
    url: Optional[str]
    expires: Optional[float]

    @classmethod
    def from_json(cls, data: dict) -> "ConfigResponse":
        ok = data.get(OK_FIELD)
        url = data.get(URL_FIELD)
        expires = data.get(EXPIRES_FIELD)
        return cls(
            ok=ok if isinstance(ok, bool) else None,
            url=url if isinstance(url, str) else None,
            expires=_finite_timestamp(expires),
        )

    @property
    def is_grant(self) -> bool:
        return self.ok is True and self.url is not None and self.expires is not None


def _finite_timestamp(value: Any) -> Optional[float]:
    # json.loads accepts NaN/Infinity and arbitrarily large ints
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def device_locale_identifier() -> str:
    """
    Device locale identifier, e.g. 'en_US', or '' when it cannot be determined.
    """
    try:
        lang, _ = locale.getlocale()
    except ValueError:
        lang = None
    return lang or ""


class RemoteConfigClient:
    """
    One-shot client for the remote config endpoint.

    Every negative signal (no conversion data, transport error,
    non-2xx, unparseable body, declined shape) trips the persisted
    breaker, after which no request is ever sent again for this
    install. Only a successful response clears it.
    """

    def __init__(
        self,
        state: PersistedGateState,
        endpoint: str | None = None,
        timeout: float | None = None,
        locale_provider: Callable[[], str] = device_locale_identifier,
    ):
        self.logger = get_logger("remote_config")
        self.state = state
        self.endpoint = endpoint or Config.CONFIG_ENDPOINT
        self.timeout = timeout if timeout is not None else Config.API_TIMEOUT
        self.locale_provider = locale_provider

        self.headers = {
            "Content-Type": "application/json",
        }

    def build_request(self, conversion: dict) -> ConfigRequest:
        return ConfigRequest(
            conversion=conversion,
            push_token=self.state.push_token(),
            af_id=self.state.attribution_id(),
            bundle_id=Config.BUNDLE_ID,
            os=Config.OS_TAG,
            store_id=Config.STORE_ID,
            locale=self.locale_provider(),
            firebase_project_id=Config.FIREBASE_PROJECT_ID,
        )

    def request_config(self) -> ConfigOutcome:
        """
        Ask the endpoint whether this install gets a web overlay.

        Returns:
            ConfigOutcome: GRANTED(url, expires_at), DECLINED or FAILED.
            Never raises for network or response problems.
        """
        if self.state.config_requests_disabled():
            tlog(self.logger, "🟡", "CONFIG", "SKIPPED", primary="breaker=open")
            return ConfigOutcome.declined()

        conversion = self.state.conversion_record()
        if conversion is None:
            self.state.disable_config_requests()
            tlog(self.logger, "🔴", "CONFIG", "DECLINED", primary="no conversion data")
            return ConfigOutcome.declined()

        payload = self.build_request(conversion).to_payload()
        self.logger.debug(f"Config request → {self.endpoint} keys={sorted(payload)}")

        start = time.perf_counter()
        try:
            resp = requests.post(
                self.endpoint,
                headers=self.headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return self._fail(f"transport={e.__class__.__name__}")
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.logger.timing(f"Timing | {'config POST':<34} [{elapsed_ms:8.1f} ms]")

        if not 200 <= resp.status_code < 300:
            return self._fail(f"status={resp.status_code}")

        if not resp.content:
            return self._fail("empty body")

        try:
            data: Any = resp.json()
        except ValueError:
            return self._fail("invalid json")

        if not isinstance(data, dict):
            return self._fail("json not an object")

        self.logger.debug(f"Config response JSON: {data}")
        return self._apply(ConfigResponse.from_json(data))

    def _apply(self, response: ConfigResponse) -> ConfigOutcome:
        if not response.is_grant:
            self.state.disable_config_requests()
            tlog(
                self.logger,
                "🔴",
                "CONFIG",
                "DECLINED",
                primary=f"ok={response.ok}",
                meta="further requests disabled",
            )
            return ConfigOutcome.declined()

        self.state.store_gate_config(
            GateConfig(url=response.url, expires_at=response.expires)
        )
        self.state.clear_config_breaker()
        tlog(
            self.logger,
            "🟢",
            "CONFIG",
            "GRANTED",
            primary=f"url={response.url}",
            meta={"expires": f"{response.expires:.0f}"},
        )
        return ConfigOutcome.granted(response.url, response.expires)

    def _fail(self, reason: str) -> ConfigOutcome:
        self.state.disable_config_requests()
        tlog(
            self.logger,
            "🔴",
            "CONFIG",
            "FAILED",
            primary=reason,
            meta="further requests disabled",
        )
        return ConfigOutcome.failed()
