import threading

import pytest

from reels_converter.reels_engine import Upload
from reels_converter.reels_engine.errors import InvalidTransition, JobNotFound, RunInProgress
from reels_converter.reels_engine.schemas import JobStatus, Kind


def _ingest(session, make_image, *names):
    uploads = [Upload(filename=name, content_type="image/jpeg", data=make_image()) for name in names]
    return session.ingest(uploads).accepted


def test_happy_path_single_job(session, fake_engine, make_image):
    session.orchestrator.set_duration(3.2)
    (job,) = _ingest(session, make_image, "beach.jpg")

    summary = session.orchestrator.run_all()

    done = session.registry.get(job.id)
    assert summary.completed == [job.id]
    assert done.status is JobStatus.COMPLETED
    assert done.progress == 100
    assert done.output_handle is not None
    assert fake_engine.runs[0][1] == 3.2
    download = session.results.get_downloadable(job.id)
    assert download.data
    assert download.filename == "beach-video.mp4"
    assert not session.orchestrator.is_running


def test_progress_is_monotonic_and_hits_100_on_completion(session, make_image):
    (job,) = _ingest(session, make_image, "a.jpg")
    history = []
    session.registry.subscribe(lambda event, j: history.append((j.status, j.progress)))

    session.orchestrator.run_all()

    processing = [p for status, p in history if status is JobStatus.PROCESSING]
    assert processing == sorted(processing)
    assert history[-1] == (JobStatus.COMPLETED, 100)


def test_jobs_run_sequentially_in_creation_order(session, fake_engine, make_image):
    jobs = _ingest(session, make_image, "1.jpg", "2.jpg", "3.jpg")
    processing_counts = []

    def check(event, job):
        processing_counts.append(sum(j.status is JobStatus.PROCESSING for j in session.registry.list()))

    session.registry.subscribe(check)
    order = []
    fake_engine.on_run = lambda args: order.append(session.registry.processing().id)

    session.orchestrator.run_all()

    assert order == [j.id for j in jobs]
    assert max(processing_counts) == 1
    assert session.registry.processing() is None


def test_failure_is_contained_and_job_stays_eligible(session, fake_engine, make_image):
    first, second = _ingest(session, make_image, "bad.jpg", "good.jpg")
    fake_engine.fail = True
    fake_engine.on_run = lambda args: setattr(fake_engine, "fail", False)

    summary = session.orchestrator.run_all()

    failed = session.registry.get(first.id)
    assert summary.failed == [first.id]
    assert summary.completed == [second.id]
    assert failed.status is JobStatus.ERROR
    assert failed.error_detail
    assert failed.output_handle is None

    # The next run retries the failed job without recreating it
    retry = session.orchestrator.run_all()
    assert retry.completed == [first.id]
    assert session.registry.get(first.id).status is JobStatus.COMPLETED


def test_engine_init_failure_marks_every_job_error(make_image):
    from reels_converter.reels_engine.render import CodecEngineAdapter, EngineError
    from reels_converter.reels_engine.session import ConversionSession

    def broken():
        raise EngineError("could not fetch core")

    session = ConversionSession(adapter=CodecEngineAdapter(engine_factory=broken))
    jobs = _ingest(session, make_image, "a.jpg", "b.jpg")

    summary = session.orchestrator.run_all()

    assert summary.failed == [j.id for j in jobs]
    for job in session.registry.list():
        assert job.status is JobStatus.ERROR
        assert "Codec engine unavailable" in job.error_detail
    session.close()


def test_missing_source_bytes_fail_the_job(session, make_image):
    (job,) = _ingest(session, make_image, "a.jpg")
    session.store.remove(job.id, Kind.SOURCE)

    session.orchestrator.run_all()

    failed = session.registry.get(job.id)
    assert failed.status is JobStatus.ERROR
    assert "Source image not available" in failed.error_detail


def test_run_snapshot_excludes_jobs_added_mid_run(session, fake_engine, make_image):
    (first,) = _ingest(session, make_image, "first.jpg")
    added = []

    def add_one(args):
        if not added:
            added.extend(_ingest(session, make_image, "late.jpg"))

    fake_engine.on_run = add_one
    summary = session.orchestrator.run_all()

    assert summary.completed == [first.id]
    assert session.registry.get(added[0].id).status is JobStatus.PENDING


def test_completed_jobs_are_not_rerun(session, fake_engine, make_image):
    _ingest(session, make_image, "a.jpg")
    session.orchestrator.run_all()
    summary = session.orchestrator.run_all()
    assert summary.total == 0
    assert len(fake_engine.runs) == 1


def test_duration_applies_to_jobs_created_earlier(session, fake_engine, make_image):
    _ingest(session, make_image, "a.jpg")
    session.orchestrator.set_duration(7.5)
    session.orchestrator.run_all()
    assert fake_engine.runs[0][1] == 7.5


def test_duration_is_validated_and_snapped(session):
    assert session.orchestrator.set_duration("4.26") == 4.3
    with pytest.raises(ValueError):
        session.orchestrator.set_duration(0.5)
    with pytest.raises(ValueError):
        session.orchestrator.set_duration(11)
    assert session.orchestrator.duration == 4.3


def test_duration_locked_and_second_run_rejected_while_running(session, fake_engine, make_image):
    _ingest(session, make_image, "a.jpg")
    entered = threading.Event()
    release = threading.Event()

    def block(args):
        entered.set()
        release.wait(5)

    fake_engine.on_run = block
    thread = session.orchestrator.start()
    try:
        assert entered.wait(5)
        assert session.orchestrator.is_running
        assert session.orchestrator.progress().running
        with pytest.raises(RunInProgress):
            session.orchestrator.set_duration(5)
        with pytest.raises(RunInProgress):
            session.orchestrator.run_all()
    finally:
        release.set()
        thread.join(5)

    assert not session.orchestrator.is_running
    progress = session.orchestrator.progress()
    assert progress.finished == progress.total == 1
    assert progress.succeeded == 1
    assert progress.percent == 100


def test_removing_in_flight_job_discards_output(session, fake_engine, make_image):
    target, other = _ingest(session, make_image, "a.jpg", "b.jpg")

    def remove_target(args):
        if session.registry.processing().id == target.id:
            session.results.remove_and_release(target.id)

    fake_engine.on_run = remove_target
    summary = session.orchestrator.run_all()

    assert summary.skipped == [target.id]
    assert summary.completed == [other.id]
    assert target.id not in session.registry
    assert not session.store.contains(target.id)
    # The other job's progress was never touched by the stale listener
    assert session.registry.get(other.id).progress == 100
    assert session.store.retained_bytes() == len(session.store.get(other.id, Kind.SOURCE)) + len(
        session.store.get(other.id, Kind.OUTPUT)
    )


def test_convert_single_job(session, make_image):
    (job,) = _ingest(session, make_image, "a.jpg")
    done = session.orchestrator.convert(job.id)
    assert done.status is JobStatus.COMPLETED

    with pytest.raises(InvalidTransition):
        session.orchestrator.convert(job.id)
    with pytest.raises(JobNotFound):
        session.orchestrator.convert("v_missing")


def test_failed_thread_start_frees_the_run_slot(session, make_image, mocker):
    (job,) = _ingest(session, make_image, "a.jpg")
    mocker.patch(
        "reels_converter.reels_engine.worker.threading.Thread.start",
        side_effect=RuntimeError("can't start new thread"),
    )

    with pytest.raises(RuntimeError):
        session.orchestrator.start()

    assert not session.orchestrator.is_running
    assert not session.orchestrator.progress().running
    assert session.orchestrator.set_duration(5) == 5.0
    assert session.registry.get(job.id).status is JobStatus.PENDING

    mocker.stopall()
    summary = session.orchestrator.run_all()
    assert summary.completed == [job.id]
