# --- Standard library imports ---
import sys
import json
import time
import argparse
from pathlib import Path

# --- Project imports ---
from .config import Config
from .logger import get_logger, setup_logging
from .bootstrap import bootstrap, build_router
from .gate_state import PersistedGateState
from .permission import AuthorizationStatus, StaticPermissionProvider
from .routing import ConversionDataReady, DeepLinkOpened, RoutingStateMachine


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="launch-gate",
        description="Run one launch through the routing gate and print where it lands.",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print persisted gate state and exit",
    )
    parser.add_argument(
        "--reset-breaker",
        action="store_true",
        help="Remove the config-requests-disabled flag and exit",
    )
    parser.add_argument(
        "--conversion-file",
        type=Path,
        help="JSON object stored as conversion data before the ready event fires",
    )
    parser.add_argument(
        "--permission",
        choices=[s.name.lower() for s in AuthorizationStatus],
        default="authorized",
        help="Notification authorization status reported by the OS",
    )
    parser.add_argument(
        "--grant",
        action="store_true",
        help="Answer the notification prompt with 'allow'",
    )
    parser.add_argument(
        "--deep-link",
        help="Deliver a notification deep link right after launch",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for a routing decision",
    )
    return parser.parse_args(argv)

def print_status(state: PersistedGateState) -> None:
    logger = get_logger("status")
    now = time.time()
    cfg = state.gate_config()

    logger.info("===== Gate State =====")
    logger.info(f"State file:            {state.path}")
    logger.info(f"Conversion data:       {'present' if state.conversion_record() else 'absent'}")
    logger.info(f"Organic install:       {state.is_organic()}")
    logger.info(f"Config breaker:        {'OPEN' if state.config_requests_disabled() else 'closed'}")
    logger.info(f"Cached config:         {cfg.url if cfg else None}")
    logger.info(f"Cached config fresh:   {cfg.is_fresh(now) if cfg else False}")
    logger.info(f"Last denial:           {state.last_denied_at()}")
    logger.info("======================\n")

def run_launch(router: RoutingStateMachine, args: argparse.Namespace) -> int:
    """
    Drive a single launch and report the final destination.
    """
    logger = get_logger("launch")
    router.start()

    router.post(ConversionDataReady())
    if args.deep_link:
        router.post(DeepLinkOpened(args.deep_link))

    if not router.wait_until_routed(args.timeout):
        logger.error(f"No routing decision within {args.timeout:.0f}s")
        router.stop()
        return 1

    router.stop()
    logger.info(f"🧭 Base route [{router.base}]")
    logger.info(f"🧭 On screen  [{router.active}]")
    return 0

def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the launch gate CLI.
    """
    args = parse_args(argv)

    setup_logging()
    logger = get_logger("main")
    logger.info("🚀 Starting launch gate")
    logger.debug(f"Python version: {sys.version}")

    state = PersistedGateState()

    if args.status:
        print_status(state)
        return 0

    if args.reset_breaker:
        state.clear_config_breaker()
        logger.info("Config breaker cleared")
        return 0

    if args.conversion_file:
        record = json.loads(args.conversion_file.read_text())
        if not isinstance(record, dict):
            logger.error("Conversion file must hold a JSON object")
            return 2
        state.store_conversion_record(record)

    services = bootstrap(state=state)
    permissions = StaticPermissionProvider(
        AuthorizationStatus[args.permission.upper()], grant=args.grant
    )
    router = build_router(services, permissions)
    return run_launch(router, args)

if __name__ == "__main__":
    sys.exit(main())
