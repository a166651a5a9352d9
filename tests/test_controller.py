import httpx
import pytest
from sqlalchemy import func, select

from photoai import db
from photoai.controller import JobController
from photoai.errors import AdapterError, InsufficientCredit, InvalidTransition
from photoai.models import EntryStatus, Job, JobKind, JobState


def _job_count():
    return db.session.execute(select(func.count(Job.id))).scalar_one()


def test_training_scenario_submit_succeed_replay(controller, reconciler, ledger, open_account, make_signal, vendor):
    open_account("acc-1", 5)

    job = controller.submit("acc-1", JobKind.training, {"images": ["s3://a.jpg", "s3://b.jpg"]})

    assert job.state == JobState.submitted
    assert job.external_ref == "vnd-1"
    assert ledger.balance("acc-1") == 4
    assert vendor.calls[0].url.path == "/v1/trainings"

    assert reconciler.handle(make_signal("succeeded", "vnd-1", result="R1")) == "applied"
    snap = controller.status(job.id)
    assert snap.state == JobState.succeeded
    assert snap.result_ref == "R1"
    assert ledger.entry_for_job(job.id).status == EntryStatus.settled
    assert ledger.balance("acc-1") == 4

    assert reconciler.handle(make_signal("succeeded", "vnd-1", result="R1")) == "duplicate"
    assert controller.status(job.id).state == JobState.succeeded
    assert ledger.balance("acc-1") == 4


def test_insufficient_credit_creates_no_job(controller, ledger, open_account, vendor):
    open_account("acc-1", 0)

    with pytest.raises(InsufficientCredit):
        controller.submit("acc-1", JobKind.generation, {"prompt": "astronaut"})

    assert _job_count() == 0
    assert ledger.balance("acc-1") == 0
    assert vendor.calls == []


def test_adapter_failure_releases_reservation(controller, ledger, open_account, vendor):
    open_account("acc-1", 4)
    vendor.fail_status = 500

    with pytest.raises(AdapterError):
        controller.submit("acc-1", JobKind.generation, {"prompt": "astronaut"})

    job = db.session.execute(select(Job)).scalars().one()
    assert job.state == JobState.failed
    assert job.failure_reason.startswith("AdapterError")
    assert job.external_ref is None
    assert ledger.balance("acc-1") == 4
    assert ledger.entry_for_job(job.id).status == EntryStatus.released


def test_transport_error_is_adapter_error(controller, ledger, open_account, vendor):
    open_account("acc-1", 2)
    vendor.raise_exc = httpx.ConnectError("connection refused")

    with pytest.raises(AdapterError):
        controller.submit("acc-1", JobKind.training, {"images": []})

    assert ledger.balance("acc-1") == 2


def test_unknown_kind_has_no_side_effects(controller, ledger, open_account):
    open_account("acc-1", 2)
    with pytest.raises(ValueError):
        controller.submit("acc-1", "upscale", {})
    assert ledger.balance("acc-1") == 2
    assert _job_count() == 0


def test_cost_per_kind(app, open_account, ledger):
    app.config["TRAINING_CREDIT_COST"] = 3
    open_account("acc-1", 5)

    JobController.from_config().submit("acc-1", JobKind.training, {"images": []})
    assert ledger.balance("acc-1") == 2


def test_cancel_releases_and_is_idempotent(controller, ledger, open_account):
    open_account("acc-1", 5)
    job = controller.submit("acc-1", JobKind.generation, {"prompt": "x"})
    assert ledger.balance("acc-1") == 4

    assert controller.cancel(job.id).state == JobState.cancelled
    assert ledger.balance("acc-1") == 5

    assert controller.cancel(job.id).state == JobState.cancelled
    assert ledger.balance("acc-1") == 5
    assert ledger.entry_for_job(job.id).status == EntryStatus.released


def test_cancel_after_terminal_is_rejected(controller, reconciler, ledger, open_account, make_signal):
    open_account("acc-1", 5)
    job = controller.submit("acc-1", JobKind.generation, {"prompt": "x"})
    reconciler.handle(make_signal("succeeded", job.external_ref, result="img.png"))

    with pytest.raises(InvalidTransition):
        controller.cancel(job.id)

    assert controller.status(job.id).state == JobState.succeeded
    assert ledger.balance("acc-1") == 4
    assert ledger.entry_for_job(job.id).status == EntryStatus.settled


def test_cancel_while_processing_is_rejected(controller, reconciler, open_account, make_signal):
    open_account("acc-1", 5)
    job = controller.submit("acc-1", JobKind.training, {"images": []})
    reconciler.handle(make_signal("started", job.external_ref))

    with pytest.raises(InvalidTransition):
        controller.cancel(job.id)


def test_status_snapshot_to_dict(controller, open_account):
    open_account("acc-1", 5)
    job = controller.submit("acc-1", JobKind.training, {"images": []})

    assert controller.status(job.id).to_dict() == {
        "id": job.id,
        "kind": JobKind.training,
        "state": JobState.submitted,
        "result_ref": None,
        "failure_reason": None,
    }


def test_duplicate_vendor_ref_is_compensated(controller, ledger, open_account, vendor):
    open_account("acc-1", 5)
    vendor.fixed_id = "vnd-dup"
    first = controller.submit("acc-1", JobKind.generation, {"prompt": "x"})

    with pytest.raises(AdapterError):
        controller.submit("acc-1", JobKind.generation, {"prompt": "y"})

    second = db.session.execute(select(Job).where(Job.id != first.id)).scalars().one()
    assert second.state == JobState.failed
    assert second.external_ref is None
    assert ledger.entry_for_job(second.id).status == EntryStatus.released
    assert ledger.balance("acc-1") == 4
    assert controller.status(first.id).state == JobState.submitted


def test_attach_failure_is_compensated(controller, ledger, open_account, monkeypatch):
    open_account("acc-1", 3)

    def boom(job_id, external_ref):
        raise RuntimeError("db down")

    monkeypatch.setattr(controller.jobs, "attach_external_ref", boom)

    with pytest.raises(RuntimeError):
        controller.submit("acc-1", JobKind.training, {"images": []})

    job = db.session.execute(select(Job)).scalars().one()
    assert job.state == JobState.failed
    assert job.failure_reason == "RuntimeError: db down"
    assert ledger.balance("acc-1") == 3


@pytest.mark.parametrize("cost", [0, -1])
def test_non_positive_cost_is_rejected(app, cost):
    app.config["GENERATION_CREDIT_COST"] = cost
    with pytest.raises(ValueError):
        JobController.from_config()
