import json

import httpx
import pytest

from photoai import create_app, db
from photoai.controller import JobController
from photoai.job_store import JobStore
from photoai.ledger import LedgerStore
from photoai.reconciler import WebhookReconciler
from photoai.signals import InboundSignal, sign

WEBHOOK_SECRET = "test-webhook-secret"
ADMIN_TOKEN = "test-admin-token"


class FakeVendor:
    """Handler para httpx.MockTransport: registra llamadas y simula al vendor."""

    def __init__(self):
        self.calls = []
        self.fail_status = None
        self.raise_exc = None
        self.statuses = {}
        self.fixed_id = None
        self._next = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "vendor exploded"})

        if request.method == "GET":
            ref = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=self.statuses.get(ref, {"id": ref, "status": "queued"}))

        self._next += 1
        return httpx.Response(201, json={"id": self.fixed_id or f"vnd-{self._next}"})

    def bodies(self):
        return [json.loads(r.content) for r in self.calls if r.method == "POST"]


@pytest.fixture
def vendor():
    return FakeVendor()


@pytest.fixture
def app(tmp_path, vendor):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'photoai-test.db'}",
            "APP_BASE_URL": "https://photoai.test",
            "VENDOR_BASE_URL": "https://vendor.test",
            "VENDOR_API_KEY": "vendor-key",
            "VENDOR_TRANSPORT": httpx.MockTransport(vendor),
            "VENDOR_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "ADMIN_TOKEN": ADMIN_TOKEN,
            "TRAINING_CREDIT_COST": 1,
            "GENERATION_CREDIT_COST": 1,
            "SIGNUP_CREDITS": 0,
        }
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ledger(app):
    return LedgerStore()


@pytest.fixture
def jobs(app):
    return JobStore()


@pytest.fixture
def controller(app):
    return JobController.from_config()


@pytest.fixture
def reconciler(app):
    return WebhookReconciler(WEBHOOK_SECRET)


@pytest.fixture
def open_account(ledger):
    def _open(account_id="acc-1", credits=5):
        ledger.open_account(account_id, credits)
        db.session.commit()
        return account_id

    return _open


@pytest.fixture
def make_signal():
    def _make(event, ref, secret=WEBHOOK_SECRET, **fields):
        body = json.dumps({"event": event, "id": ref, **fields}).encode("utf-8")
        return InboundSignal(body=body, signature=sign(body, secret))

    return _make
