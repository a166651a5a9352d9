import json
import threading

import pytest

from photoai import db
from photoai.controller import JobController
from photoai.errors import AuthenticationError, InvalidTransition, MalformedPayload, NotFound
from photoai.ledger import LedgerStore
from photoai.models import EntryStatus, JobKind, JobState
from photoai.reconciler import WebhookReconciler
from photoai.signals import InboundSignal

from conftest import WEBHOOK_SECRET


@pytest.fixture
def submitted(controller, open_account):
    open_account("acc-1", 5)
    return controller.submit("acc-1", JobKind.training, {"images": ["a.jpg"]})


def test_forged_signal_touches_nothing(reconciler, ledger, jobs, submitted, make_signal):
    forged = make_signal("succeeded", submitted.external_ref, secret="wrong", result="R1")

    with pytest.raises(AuthenticationError):
        reconciler.handle(forged)

    assert jobs.get(submitted.id).state == JobState.submitted
    assert ledger.entry_for_job(submitted.id).status == EntryStatus.reserved


def test_missing_signature_or_secret(app, submitted):
    body = json.dumps({"event": "failed", "id": submitted.external_ref}).encode()

    with pytest.raises(AuthenticationError):
        WebhookReconciler(WEBHOOK_SECRET).handle(InboundSignal(body=body, signature=None))
    with pytest.raises(AuthenticationError):
        WebhookReconciler(None).handle(InboundSignal(body=body, signature="abc"))


def test_malformed_payload(reconciler, make_signal):
    with pytest.raises(MalformedPayload):
        reconciler.handle(make_signal("exploded", "vnd-1"))
    with pytest.raises(MalformedPayload):
        reconciler.handle(make_signal("succeeded", "vnd-1"))


def test_unknown_reference_is_not_found(reconciler, make_signal):
    with pytest.raises(NotFound):
        reconciler.handle(make_signal("failed", "vnd-unknown", error="x"))


def test_started_moves_to_processing(reconciler, jobs, submitted, make_signal):
    assert reconciler.handle(make_signal("started", submitted.external_ref)) == "applied"
    assert reconciler.handle(make_signal("started", submitted.external_ref)) == "duplicate"
    assert jobs.get(submitted.id).state == JobState.processing


def test_late_started_after_terminal_is_ignored(reconciler, jobs, submitted, make_signal):
    reconciler.handle(make_signal("succeeded", submitted.external_ref, result="R1"))

    assert reconciler.handle(make_signal("started", submitted.external_ref)) == "ignored"
    assert jobs.get(submitted.id).state == JobState.succeeded


def test_failed_releases_in_full_and_replay_is_noop(reconciler, ledger, jobs, submitted, make_signal):
    signal = make_signal("failed", submitted.external_ref, error="not enough faces")

    assert reconciler.handle(signal) == "applied"
    assert reconciler.handle(signal) == "duplicate"

    job = jobs.get(submitted.id)
    assert job.state == JobState.failed
    assert job.failure_reason == "not enough faces"
    assert ledger.balance("acc-1") == 5
    assert ledger.entry_for_job(submitted.id).status == EntryStatus.released


def test_failed_after_succeeded_does_not_refund(reconciler, ledger, jobs, submitted, make_signal):
    ref = submitted.external_ref
    reconciler.handle(make_signal("started", ref))
    reconciler.handle(make_signal("succeeded", ref, result="R1"))

    assert reconciler.handle(make_signal("failed", ref, error="late")) == "ignored"

    assert jobs.get(submitted.id).state == JobState.succeeded
    assert ledger.entry_for_job(submitted.id).status == EntryStatus.settled
    assert ledger.balance("acc-1") == 4


def test_succeeded_after_failed_does_not_charge(reconciler, ledger, jobs, submitted, make_signal):
    ref = submitted.external_ref
    reconciler.handle(make_signal("failed", ref, error="boom"))

    assert reconciler.handle(make_signal("succeeded", ref, result="R1")) == "ignored"

    job = jobs.get(submitted.id)
    assert job.state == JobState.failed
    assert job.result_ref is None
    assert ledger.entry_for_job(submitted.id).status == EntryStatus.released
    assert ledger.balance("acc-1") == 5


def test_succeeded_after_cancel_is_ignored(controller, reconciler, ledger, submitted, make_signal):
    controller.cancel(submitted.id)

    assert reconciler.handle(make_signal("succeeded", submitted.external_ref, result="R1")) == "ignored"
    assert controller.status(submitted.id).state == JobState.cancelled
    assert ledger.balance("acc-1") == 5


def test_cancel_racing_terminal_webhook_settles_exactly_once(app, submitted, make_signal):
    job_id, ref = submitted.id, submitted.external_ref
    signal = make_signal("succeeded", ref, result="R1")
    db.session.commit()

    barrier = threading.Barrier(2)
    errors = []

    def do_cancel():
        with app.app_context():
            barrier.wait()
            try:
                JobController.from_config().cancel(job_id)
            except InvalidTransition:
                pass
            except Exception as e:  # pragma: no cover
                errors.append(e)
            finally:
                db.session.remove()

    def do_webhook():
        with app.app_context():
            barrier.wait()
            try:
                WebhookReconciler(WEBHOOK_SECRET).handle(signal)
            except Exception as e:  # pragma: no cover
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=do_cancel), threading.Thread(target=do_webhook)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    ledger = LedgerStore()
    final = JobController.from_config().status(job_id).state
    entry = ledger.entry_for_job(job_id)
    assert final in (JobState.cancelled, JobState.succeeded)
    if final == JobState.succeeded:
        assert entry.status == EntryStatus.settled
        assert ledger.balance("acc-1") == 4
    else:
        assert entry.status == EntryStatus.released
        assert ledger.balance("acc-1") == 5
    balance, expected = ledger.audit("acc-1")
    assert balance == expected
