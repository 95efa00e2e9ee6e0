import pytest
import logging

from launch_gate.gate_policy import GatePolicy
from launch_gate.gate_state import PersistedGateState
from launch_gate.permission import AuthorizationStatus, NotificationPermissionGate
from launch_gate.remote_config import ConfigOutcome
from launch_gate.routing import RoutingStateMachine


# Fixed wall clock for denial timestamps
NOW = 1_760_000_000.0

TEST_POLICY = GatePolicy(fallback_delay_s=2.0, permission_cooldown_s=3 * 24 * 3600)


# =====
# FAKES
# =====

class FakeConnectivity:
    """Connectivity source flipped by hand."""

    def __init__(self, disconnected=False):
        self.disconnected = disconnected
        self.subscribers = []

    def subscribe(self, callback):
        self.subscribers.append(callback)

    def set(self, disconnected):
        self.disconnected = disconnected
        for callback in self.subscribers:
            callback(disconnected)

class ManualScheduler:
    """Jobs run on demand, timers fire when the fake clock passes them."""

    def __init__(self):
        self.now = 0.0
        self.timers = []
        self.jobs = []

    def call_later(self, delay_s, fn):
        self.timers.append((self.now + delay_s, fn))

    def submit(self, fn):
        self.jobs.append(fn)

    def run_jobs(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()

    def advance(self, seconds):
        self.now += seconds
        due = [t for t in self.timers if t[0] <= self.now]
        self.timers = [t for t in self.timers if t[0] > self.now]
        for _, fn in due:
            fn()

class FakeConfigClient:
    def __init__(self, outcome=None):
        self.outcome = outcome or ConfigOutcome.declined()
        self.calls = 0

    def request_config(self):
        self.calls += 1
        return self.outcome

class FakePermissionProvider:
    """OS permission API whose prompt stays open until answered."""

    def __init__(self, status=AuthorizationStatus.AUTHORIZED):
        self.status = status
        self.requests = 0
        self.pending = []

    def authorization_status(self):
        return self.status

    def request_authorization(self, on_result):
        self.requests += 1
        self.pending.append(on_result)

    def answer(self, granted):
        pending, self.pending = self.pending, []
        for callback in pending:
            callback(granted)


def settle(router, scheduler):
    """Apply events and run submitted jobs until nothing is left (timers excluded)."""
    while True:
        processed = router.drain()
        if scheduler.jobs:
            scheduler.run_jobs()
            continue
        if processed == 0:
            return


# ========
# FIXTURES
# ========

@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers bound to a previous test's captured stdout"""
    yield
    logging.getLogger().handlers.clear()

@pytest.fixture
def state(tmp_path):
    return PersistedGateState(tmp_path / "gate_state.json")

@pytest.fixture
def connectivity():
    return FakeConnectivity()

@pytest.fixture
def scheduler():
    return ManualScheduler()

@pytest.fixture
def permissions():
    return FakePermissionProvider()

@pytest.fixture
def make_router(state, connectivity, scheduler, permissions):
    """Build a router around the shared fakes and the given config client."""

    def _make(config_client):
        gate = NotificationPermissionGate(
            state, permissions, policy=TEST_POLICY, clock=lambda: NOW
        )
        return RoutingStateMachine(
            state=state,
            connectivity=connectivity,
            config_client=config_client,
            permission_gate=gate,
            scheduler=scheduler,
            policy=TEST_POLICY,
        )

    return _make
