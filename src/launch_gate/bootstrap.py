# ─── Standard library imports ───
from urllib.parse import urlparse
from dataclasses import dataclass

# ─── Project imports ───
from .config import Config
from .logger import get_logger
from .gate_state import PersistedGateState
from .gate_policy import GatePolicy, gate_policy
from .remote_config import RemoteConfigClient
from .routing import RoutingStateMachine, Scheduler
from .connectivity import ConnectivitySource, init_connectivity_monitor
from .permission import NotificationPermissionGate, PermissionProvider


logger = get_logger("bootstrap")

@dataclass(frozen=True)
class GateServices:
    """
    Process-wide collaborators created once at startup.
    """
    state: PersistedGateState
    connectivity: ConnectivitySource

def bootstrap(
    state: PersistedGateState | None = None,
    connectivity: ConnectivitySource | None = None,
    policy: GatePolicy = gate_policy,
) -> GateServices:
    """
    Validate configuration and create the process-wide services.

    Hard invariant violations raise and abort startup.
    """
    _validate_invariants(policy)

    state = state or PersistedGateState()
    connectivity = connectivity or init_connectivity_monitor()

    logger.info(f"Gate state at {state.path}")
    logger.info(f"Gate policy {policy.summary()}")
    if state.config_requests_disabled():
        logger.warning("Config requests disabled for this install (breaker set)")

    return GateServices(state=state, connectivity=connectivity)

def _validate_invariants(policy: GatePolicy) -> None:
    """
    Fail fast on configuration that cannot route correctly.
    """
    endpoint = urlparse(Config.CONFIG_ENDPOINT)
    if endpoint.scheme != "https" or not endpoint.netloc:
        raise ValueError(
            f"CONFIG_ENDPOINT must be an https URL, got {Config.CONFIG_ENDPOINT!r}"
        )
    policy.validate()

def build_router(
    services: GateServices,
    permissions: PermissionProvider,
    scheduler: Scheduler | None = None,
    policy: GatePolicy = gate_policy,
) -> RoutingStateMachine:
    """
    Wire the config client and permission gate into a fresh router.

    One router per launch.
    """
    return RoutingStateMachine(
        state=services.state,
        connectivity=services.connectivity,
        config_client=RemoteConfigClient(services.state),
        permission_gate=NotificationPermissionGate(
            services.state, permissions, policy=policy
        ),
        scheduler=scheduler,
        policy=policy,
    )
