# --- Standard library imports ---
import logging
from typing import Mapping, Union


# Subsystems that emit gate telemetry; the first column fits the longest
SUBSYSTEMS = ("CONVERSION", "PERMISSION", "CONFIG", "ROUTING", "DEEP_LINK", "NETWORK")
SUBSYSTEM_WIDTH = max(len(s) for s in SUBSYSTEMS)

STATE_WIDTH = 16

# Negative outcomes (declined, failed, denied, link down)
ALERT_EMOJI = "🔴"

Meta = Union[str, Mapping[str, object], None]


def format_meta(meta: Meta) -> str:
    """Render meta as-is, or a mapping as space-separated key=value pairs."""
    if not meta:
        return ""
    if isinstance(meta, str):
        return meta
    return " ".join(f"{key}={value}" for key, value in meta.items())

def tlog(
    logger: logging.Logger,
    emoji: str,
    subsystem: str,
    state: str,
    primary: str = "—--",
    meta: Meta = None,
) -> None:
    """
    Emit one aligned telemetry line for a gate event.

    Format:
        EMOJI SUBSYSTEM STATE PRIMARY | key=value ...

    Example:
        🟢 CONFIG     GRANTED          url=https://x | expires=1700000000

    Alert lines go out at WARNING so they still show when LOG_LEVEL
    is raised above INFO.
    """
    msg = f"{emoji} {subsystem:<{SUBSYSTEM_WIDTH}} {state:<{STATE_WIDTH}} {primary}"
    rendered = format_meta(meta)
    if rendered:
        msg += f" | {rendered}"

    level = logging.WARNING if emoji == ALERT_EMOJI else logging.INFO
    logger.log(level, msg, stacklevel=2)
