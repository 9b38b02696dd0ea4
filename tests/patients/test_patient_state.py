"""
Tests for the per-session patient cache: optimistic updates, rollback and
change feed reconciliation.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import OWNER_ID
from estimate_tracker.core.feed import DELETE, UPDATE
from estimate_tracker.exceptions import StoreError
from estimate_tracker.patients.models import ArchiveStatus, PatientStatus
from estimate_tracker.patients.schemas import PatientCreate, PdfAttachment
from estimate_tracker.patients.state import FailureReason, PatientState, SessionRegistry

BUCKET = "cost_estimates"
BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def run(coroutine):
    return asyncio.run(coroutine)


def seed(store, last_name, minutes=0, **values):
    row = {
        "owner_id": OWNER_ID,
        "last_name": last_name,
        "status": PatientStatus.SENT.value,
        "archive_status": ArchiveStatus.NOT_ARCHIVED.value,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    row.update(values)
    return run(store.insert(row))


def test_load_returns_active_records_oldest_first(state, patient_store):
    seed(patient_store, "Later", minutes=10)
    seed(patient_store, "Earlier", minutes=1)
    seed(patient_store, "Done", status="appointment", archive_status="archived")
    seed(patient_store, "Other owner", owner_id="someone-else")

    result = run(state.load())

    assert result.success
    assert [p.last_name for p in state.patients] == ["Earlier", "Later"]
    assert state.loaded is True
    assert state.loading is False


def test_load_failure_leaves_empty_cache(state, patient_store):
    seed(patient_store, "Muster")
    patient_store.fail_on.add("select")

    result = run(state.load())

    assert not result.success
    assert result.reason == FailureReason.REMOTE
    assert state.patients == []
    assert state.loading is False


def test_create_leaves_exactly_one_record(state):
    result = run(state.create(PatientCreate(first_name="Erika", last_name="Muster", email="erika@example.com")))

    assert result.success
    assert len(state.patients) == 1
    patient = state.patients[0]
    assert patient.id == result.patient.id
    assert isinstance(patient.id, int)
    assert patient.status == PatientStatus.SENT
    assert patient.email_sent_count == 0


def test_create_with_pdf_uploads_and_signs(state, object_store):
    data = PatientCreate(last_name="Muster", pdf=PdfAttachment(filename="Kosten plan.pdf", content=b"%PDF-1.4"))

    result = run(state.create(data))

    assert result.success
    key = result.patient.pdf_file_path
    assert key.startswith(f"{OWNER_ID}/")
    assert key.endswith("-Kosten_plan.pdf")
    assert object_store.objects(BUCKET)[key] == b"%PDF-1.4"
    assert state.pdf_url(result.patient).startswith("https://files.example.com/")


def test_create_insert_failure_removes_placeholder_and_pdf(state, patient_store, object_store):
    patient_store.fail_on.add("insert")
    data = PatientCreate(last_name="Muster", pdf=PdfAttachment(filename="plan.pdf", content=b"%PDF"))

    result = run(state.create(data))

    assert not result.success
    assert result.reason == FailureReason.REMOTE
    assert state.patients == []
    assert object_store.objects(BUCKET) == {}
    assert len(object_store.removed) == 1


def test_create_upload_failure_skips_insert(state, patient_store, object_store):
    object_store.fail_on.add("upload")
    data = PatientCreate(last_name="Muster", pdf=PdfAttachment(filename="plan.pdf", content=b"%PDF"))

    result = run(state.create(data))

    assert not result.success
    assert state.patients == []
    assert "insert" not in patient_store.calls


def test_failed_move_restores_exact_snapshot(state, patient_store):
    seed(patient_store, "Muster")
    run(state.load())
    before = state.patients[0]
    patient_store.fail_on.add("update")

    result = run(state.move(before.id, PatientStatus.REMINDED))

    assert not result.success
    assert result.reason == FailureReason.REMOTE
    assert state.get(before.id) == before


def test_move_to_reminded_sets_timestamp(state, patient_store):
    row = seed(patient_store, "Muster")
    run(state.load())

    result = run(state.move(row["id"], PatientStatus.REMINDED))

    assert result.success
    patient = state.get(row["id"])
    assert patient.status == PatientStatus.REMINDED
    assert patient.reminded_at is not None


def test_move_to_archival_status_archives(state, patient_store):
    row = seed(patient_store, "Muster")
    run(state.load())

    result = run(state.move(row["id"], PatientStatus.NO_APPOINTMENT))

    assert result.success
    patient = state.get(row["id"])
    assert patient.status == PatientStatus.NO_APPOINTMENT
    assert patient.archive_status == ArchiveStatus.ARCHIVED
    assert patient.archived_at is not None


def test_move_back_to_active_column_unarchives(state, patient_store):
    row = seed(patient_store, "Muster")
    run(state.load())
    run(state.archive(row["id"], PatientStatus.APPOINTMENT))

    result = run(state.move(row["id"], PatientStatus.SENT))

    assert result.success
    patient = state.get(row["id"])
    assert patient.archive_status == ArchiveStatus.NOT_ARCHIVED
    assert patient.archived_at is None


def test_archive_rejects_active_status_without_remote_call(state, patient_store):
    row = seed(patient_store, "Muster")
    run(state.load())
    patient_store.calls.clear()

    result = run(state.archive(row["id"], PatientStatus.REMINDED))

    assert not result.success
    assert result.reason == FailureReason.VALIDATION
    assert patient_store.calls == []


def test_unknown_patient_is_not_found(state):
    result = run(state.move(999, PatientStatus.REMINDED))
    assert result.reason == FailureReason.NOT_FOUND


def test_feed_update_overwrites_cached_record(state, patient_store, feed):
    row = seed(patient_store, "Muster", notes="old")
    run(state.load())

    pushed = dict(row, notes="from another session", status="reminded")
    feed.publish(UPDATE, pushed)

    patient = state.get(row["id"])
    assert patient.notes == "from another session"
    assert patient.status == PatientStatus.REMINDED


def test_feed_delete_removes_record(state, patient_store, feed):
    row = seed(patient_store, "Muster")
    run(state.load())

    feed.publish(DELETE, row)

    assert state.get(row["id"]) is None


def test_feed_insert_for_other_owner_is_ignored(state, patient_store):
    seed(patient_store, "Fremd", owner_id="someone-else")
    assert state.patients == []


def test_update_notes_blank_clears(state, patient_store):
    row = seed(patient_store, "Muster", notes="call back")
    run(state.load())

    result = run(state.update_notes(row["id"], "   "))

    assert result.success
    assert state.get(row["id"]).notes is None


def test_email_count_is_capped_without_remote_call(state, patient_store):
    row = seed(patient_store, "Muster", email_sent_count=2)
    run(state.load())
    patient_store.calls.clear()

    result = run(state.increment_email_count(row["id"]))

    assert not result.success
    assert result.reason == FailureReason.LIMIT
    assert patient_store.calls == []
    assert state.get(row["id"]).email_sent_count == 2


def test_email_count_increments(state, patient_store):
    row = seed(patient_store, "Muster", email_sent_count=1)
    run(state.load())

    result = run(state.increment_email_count(row["id"]))

    assert result.success
    assert state.get(row["id"]).email_sent_count == 2
    assert state.get(row["id"]).email_sent_at is not None


def test_archived_counts(state, patient_store):
    seed(patient_store, "A", status="appointment", archive_status="archived")
    seed(patient_store, "B", status="appointment", archive_status="archived")
    seed(patient_store, "C", status="no_appointment", archive_status="archived")
    seed(patient_store, "D")

    counts = run(state.archived_counts())

    assert counts == {"appointment": 2, "no_appointment": 1}


def test_delete_archived_removes_records_and_pdfs(state, patient_store, object_store):
    object_store.objects(BUCKET)["owner-1/1-a.pdf"] = b"%PDF"
    archived = seed(patient_store, "A", pdf_file_path="owner-1/1-a.pdf")
    active = seed(patient_store, "B")
    run(state.load())
    run(state.archive(archived["id"], PatientStatus.APPOINTMENT))

    result = run(state.delete_archived())

    assert result.success
    assert result.count == 1
    assert [p.id for p in state.patients] == [active["id"]]
    assert object_store.objects(BUCKET) == {}
    assert run(patient_store.select({"owner_id": OWNER_ID}))[0]["id"] == active["id"]


def test_delete_archived_restores_cache_when_delete_fails(state, patient_store):
    archived = seed(patient_store, "A")
    run(state.load())
    run(state.archive(archived["id"], PatientStatus.NO_APPOINTMENT))
    patient_store.fail_on.add("delete")

    result = run(state.delete_archived())

    assert not result.success
    assert state.get(archived["id"]) is not None
    assert state.get(archived["id"]).status == PatientStatus.NO_APPOINTMENT


def test_start_twice_keeps_single_subscription(state, feed):
    state.start()
    state.start()
    assert feed.subscription_count == 1


def test_stop_clears_cache_and_subscription(state, patient_store, feed):
    seed(patient_store, "Muster")
    run(state.load())

    state.stop()

    assert state.patients == []
    assert feed.subscription_count == 0
    seed(patient_store, "Nach Abmeldung")
    assert state.patients == []


def test_registry_reuses_state_per_account(patient_store, object_store, feed):
    registry = SessionRegistry(
        lambda owner_id: PatientState(owner_id, records=patient_store, objects=object_store, feed=feed)
    )

    first = run(registry.sign_in(OWNER_ID))
    second = run(registry.sign_in(OWNER_ID))

    assert first is second
    assert feed.subscription_count == 1
    assert registry.sign_out(OWNER_ID) is True
    assert feed.subscription_count == 0
    assert registry.get(OWNER_ID) is None


def test_registry_sign_in_raises_when_load_fails(patient_store, object_store, feed):
    registry = SessionRegistry(
        lambda owner_id: PatientState(owner_id, records=patient_store, objects=object_store, feed=feed)
    )
    patient_store.fail_on.add("select")

    with pytest.raises(StoreError, match="Patient data could not be loaded"):
        run(registry.sign_in(OWNER_ID))

    patient_store.fail_on.clear()
    seed(patient_store, "Muster")
    state = run(registry.sign_in(OWNER_ID))
    assert [p.last_name for p in state.patients] == ["Muster"]
    assert feed.subscription_count == 1
