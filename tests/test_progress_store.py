import pytest

from progress_store import (
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_PROCESSING,
    ProgressNotFound,
    ProgressStore,
)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ProgressStore(ttl_seconds=300, stale_seconds=3600, clock=clock)


def test_progress_tracks_batches_and_estimates_remaining_time(store, clock):
    store.start("job-1", total_batches=4, total_records=1000, lot_number="LOT-1", production_id=7)
    snapshot = store.snapshot("job-1")
    assert snapshot["status"] == STATUS_PROCESSING
    assert snapshot["percentage"] == 0
    assert snapshot["estimated_time_remaining"] is None
    assert snapshot["lot_number"] == "LOT-1"
    assert snapshot["production_id"] == 7
    assert snapshot["terminal"] is False

    clock.advance(10)
    store.update("job-1", current_batch=1, total_inserted=250)
    snapshot = store.snapshot("job-1")
    assert snapshot["current_batch"] == 1
    assert snapshot["total_batches"] == 4
    assert snapshot["percentage"] == 25
    assert snapshot["estimated_time_remaining"] == 30


def test_resumed_job_estimates_from_rows_inserted_this_run(store, clock):
    store.start("job-r", total_batches=2, total_records=1000, already_inserted=800)
    snapshot = store.snapshot("job-r")
    assert snapshot["total_inserted"] == 800
    assert snapshot["percentage"] == 80
    assert snapshot["estimated_time_remaining"] is None

    clock.advance(10)
    store.update("job-r", current_batch=1, total_inserted=900)
    snapshot = store.snapshot("job-r")
    assert snapshot["percentage"] == 90
    # 100 rows in 10 seconds leaves 10 seconds for the last 100 rows.
    assert snapshot["estimated_time_remaining"] == 10
    assert store.get("job-r").run_inserted == 100


def test_completed_job_expires_after_ttl(store, clock):
    store.start("job-2", total_batches=1, total_records=50)
    store.complete("job-2", total_inserted=50)

    snapshot = store.snapshot("job-2")
    assert snapshot["status"] == STATUS_COMPLETED
    assert snapshot["percentage"] == 100
    assert snapshot["estimated_time_remaining"] == 0
    assert snapshot["current_batch"] == 1
    assert snapshot["terminal"] is True

    clock.advance(299)
    assert store.get("job-2").status == STATUS_COMPLETED

    clock.advance(1)
    with pytest.raises(ProgressNotFound):
        store.get("job-2")


def test_failed_job_keeps_error_message_until_expiry(store, clock):
    store.start("job-3", total_batches=2, total_records=99)
    store.update("job-3", current_batch=1, total_inserted=50)
    store.fail("job-3", "Batch 2 of 2 failed: OperationalError")

    record = store.get("job-3")
    assert record.status == STATUS_ERROR
    assert record.error == "Batch 2 of 2 failed: OperationalError"
    assert record.total_inserted == 50
    assert record.terminal

    clock.advance(300)
    assert store.purge_expired() == 1
    assert len(store) == 0


def test_abandoned_processing_job_is_purged_when_stale(store, clock):
    store.start("job-4", total_batches=10, total_records=5000)
    clock.advance(3599)
    assert store.get("job-4").status == STATUS_PROCESSING

    clock.advance(1)
    with pytest.raises(ProgressNotFound):
        store.snapshot("job-4")


def test_updates_refresh_stale_timer(store, clock):
    store.start("job-5", total_batches=10, total_records=5000)
    clock.advance(3000)
    store.update("job-5", current_batch=2, total_inserted=1000)
    clock.advance(3000)
    assert store.get("job-5").current_batch == 2


def test_unknown_job_raises(store):
    with pytest.raises(ProgressNotFound):
        store.get("missing")
    with pytest.raises(ProgressNotFound):
        store.update("missing", current_batch=1, total_inserted=1)
    with pytest.raises(ProgressNotFound):
        store.complete("missing")


def test_returned_records_are_copies(store):
    record = store.start("job-6", total_batches=1, total_records=10)
    record.total_inserted = 10
    record.status = STATUS_COMPLETED

    stored = store.get("job-6")
    assert stored.total_inserted == 0
    assert stored.status == STATUS_PROCESSING


def test_empty_job_reports_full_percentage_once_completed(store):
    store.start("job-7", total_batches=0, total_records=0)
    assert store.snapshot("job-7")["percentage"] == 0
    store.complete("job-7")
    assert store.snapshot("job-7")["percentage"] == 100


def test_discard_removes_job(store):
    store.start("job-8", total_batches=1, total_records=1)
    store.discard("job-8")
    store.discard("job-8")
    assert len(store) == 0
