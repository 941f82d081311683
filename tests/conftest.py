from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so `import procureflow.*` works without installing.
ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

from procureflow.bootstrap import build_services  # noqa: E402
from procureflow.modules.identity import Actor, Role  # noqa: E402
from procureflow.settings import Settings  # noqa: E402


class FakeClock:
    """Deterministic UTC clock: every call advances by `step_s` seconds."""

    def __init__(self, start: datetime | None = None, step_s: float = 1.0):
        self.current = start or datetime(2025, 3, 3, 9, 0, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_s)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self.current = self.current + self.step
            return self.current.isoformat().replace("+00:00", "Z")

    def advance(self, **kwargs) -> None:
        with self._lock:
            self.current = self.current + timedelta(**kwargs)


# Minimal attributes that satisfy each entity type's partition key.
ENTITY_ATTRS = {
    "Procurement": {"department": "works", "title": "Road resurfacing", "estimatedValue": 250000.0},
    "RFQ": {"procurementId": "proc-1", "department": "works", "title": "Asphalt supply"},
    "Submission": {"rfqId": "rfq-1", "vendorId": "vendor-1", "price": 1000.0},
    "Evaluation": {"submissionId": "sub-1", "evaluatorId": "eval-1"},
    "Approval": {"subjectType": "Procurement", "subjectId": "proc-1"},
    "Award": {"rfqId": "rfq-1", "vendorId": "vendor-1", "awardedAmount": 1000.0},
    "Contract": {"vendorId": "vendor-1", "awardId": "award-1"},
    "Plan": {"procurementId": "proc-1", "department": "works"},
    "Clarification": {"rfqId": "rfq-1", "vendorId": "vendor-1", "question": "Delivery window?"},
    "Template": {"templateType": "rfq", "category": "goods", "name": "Goods RFQ"},
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(store_backend="memory", store_retry_delay_s=0, environment="test")


@pytest.fixture
def services(settings, clock):
    return build_services(settings, clock=clock)


@pytest.fixture
def officer():
    return Actor(id="officer-1", role=Role.PROCUREMENT_OFFICER, name="Olu Officer", department="works")


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=Role.ADMIN, name="Ada Admin")


@pytest.fixture
def approver():
    return Actor(id="appr-1", role=Role.APPROVER, name="Abe Approver")


@pytest.fixture
def evaluator():
    return Actor(id="eval-1", role=Role.EVALUATOR)


@pytest.fixture
def vendor():
    return Actor(id="vendor-1", role=Role.VENDOR)


@pytest.fixture
def viewer():
    return Actor(id="viewer-1", role=Role.VIEWER)


@pytest.fixture
def make_entity(services, officer):
    def _make(entity_type: str, actor: Actor | None = None, **extra):
        attrs = {**ENTITY_ATTRS[entity_type], **extra}
        return services.store.create(entity_type, attrs, actor=actor or officer)

    return _make
