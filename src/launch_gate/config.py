# --- Standard library imports ---
import os
from pathlib import Path

# --- Third-party imports ---
from dotenv import load_dotenv


# Load .env once
load_dotenv()

class Config:
    """Centralized config for the launch gate: app identity, network and observability"""

    # --- Remote Config Endpoint ---
    CONFIG_ENDPOINT = os.getenv(
        "CONFIG_ENDPOINT", "https://frosttimeplus.com/config.php"
    )

    # --- App Identity (sent with every config request) ---
    BUNDLE_ID = os.getenv("BUNDLE_ID", "com.app.countdowntimerplus")
    OS_TAG = os.getenv("OS_TAG", "iOS")
    STORE_ID = os.getenv("STORE_ID", "6758344924")
    FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "739920956005")

    # --- Network Policy ---
    try:
        API_TIMEOUT = float(os.getenv("API_TIMEOUT", 8))
    except ValueError:
        API_TIMEOUT = 8.0   # seconds (transport timeout, no retries)

    # --- Routing Policy ---
    try:
        FALLBACK_DELAY_S = float(os.getenv("FALLBACK_DELAY_S", 2))
    except ValueError:
        FALLBACK_DELAY_S = 2.0

    try:
        PERMISSION_COOLDOWN_S = int(os.getenv("PERMISSION_COOLDOWN_S", 3 * 24 * 3600))
    except ValueError:
        PERMISSION_COOLDOWN_S = 3 * 24 * 3600   # 3 days

    # --- Connectivity Probe ---
    CONNECTIVITY_HOST = os.getenv("CONNECTIVITY_HOST", "1.1.1.1")

    try:
        CONNECTIVITY_PORT = int(os.getenv("CONNECTIVITY_PORT", 443))
    except ValueError:
        CONNECTIVITY_PORT = 443

    try:
        CONNECTIVITY_POLL_S = float(os.getenv("CONNECTIVITY_POLL_S", 2))
    except ValueError:
        CONNECTIVITY_POLL_S = 2.0

    # --- Persistence ---
    STATE_FILE = Path(
        os.getenv(
            "STATE_FILE",
            str(Path.home() / ".cache" / "launch_gate" / "gate_state.json"),
        )
    ).expanduser()

    # --- Observability Policy ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_TIMING = os.getenv("LOG_TIMING", "false").lower() == "true"
