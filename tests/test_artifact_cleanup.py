from apscheduler.triggers.date import DateTrigger

from results_api.services.artifact_cleanup import ArtifactCleanupService

KEYS = ["results/csv/a.csv", "results/signatures/t.png", "results/signatures/p.png"]


def test_every_key_is_deleted(storage, scheduler):
    report = ArtifactCleanupService(storage, scheduler).cleanup(KEYS)

    assert sorted(report.deleted) == sorted(KEYS)
    assert report.failed == []
    assert report.retry_scheduled is False
    assert scheduler.jobs == []


def test_failures_are_rescheduled_with_the_next_attempt(storage, scheduler):
    storage.failing_keys = {"results/signatures/t.png"}
    service = ArtifactCleanupService(storage, scheduler, max_attempts=3, retry_delay_seconds=30)

    report = service.cleanup(KEYS)

    assert sorted(report.deleted) == ["results/csv/a.csv", "results/signatures/p.png"]
    assert report.failed == ["results/signatures/t.png"]
    assert report.retry_scheduled is True

    (job,) = scheduler.jobs
    assert job["func"] == service.cleanup
    assert job["args"] == [["results/signatures/t.png"], 2]
    assert job["name"] == "artifact-cleanup"
    assert isinstance(job["trigger"], DateTrigger)


def test_retry_run_succeeds_once_storage_recovers(storage, scheduler):
    storage.failing_keys = {"results/csv/a.csv"}
    service = ArtifactCleanupService(storage, scheduler, max_attempts=3, retry_delay_seconds=0)
    service.cleanup(KEYS)

    storage.failing_keys = set()
    job = scheduler.jobs[0]
    report = job["func"](*job["args"])

    assert (report.attempt, report.deleted, report.failed) == (2, ["results/csv/a.csv"], [])
    assert len(scheduler.jobs) == 1


def test_gives_up_after_the_last_attempt(storage, scheduler):
    storage.failing_keys = {"results/csv/a.csv"}
    service = ArtifactCleanupService(storage, scheduler, max_attempts=2)

    report = service.cleanup(["results/csv/a.csv"], attempt=2)

    assert report.failed == ["results/csv/a.csv"]
    assert report.retry_scheduled is False
    assert scheduler.jobs == []


def test_without_a_scheduler_failures_are_only_reported(storage):
    storage.failing_keys = {"results/csv/a.csv"}
    report = ArtifactCleanupService(storage, None, max_attempts=3).cleanup(["results/csv/a.csv"])

    assert report.failed == ["results/csv/a.csv"]
    assert report.retry_scheduled is False


def test_no_keys_is_a_no_op(storage, scheduler):
    report = ArtifactCleanupService(storage, scheduler).cleanup([])
    assert (report.deleted, report.failed, report.attempt) == ([], [], 1)
    assert storage.deleted == []
