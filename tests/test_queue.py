import asyncio

import pytest

from app.jobs.queue import InvalidTransition, Job, JobQueue, JobState, RetryPolicy, run_pass


class Result:
    def summary(self):
        return "Orders: 1 created"

    def as_dict(self):
        return {"ordersCreated": 1}


def test_retry_delays_double():
    assert RetryPolicy(attempts=4, base_delay=10).delays() == [10, 20, 40]
    assert RetryPolicy().delays() == [10, 20]


def test_retry_policy_from_env(monkeypatch):
    monkeypatch.setenv("JOB_ATTEMPTS", "5")
    monkeypatch.setenv("JOB_BACKOFF_SECONDS", "2")
    assert RetryPolicy.from_env() == RetryPolicy(attempts=5, base_delay=2.0)


def test_terminal_jobs_reject_transitions():
    job = Job(store_id="s1", kind="order", run_at=0.0)
    with pytest.raises(InvalidTransition):
        job.succeed(None)
    job.start(1.0)
    job.succeed("done")
    with pytest.raises(InvalidTransition):
        job.start(2.0)
    assert job.history == [JobState.PENDING, JobState.RUNNING, JobState.SUCCEEDED]


@pytest.mark.asyncio
async def test_enqueue_staggers_run_at(broadcaster):
    async def handler(store_id):
        return Result()

    queue = JobQueue(handler, policy=RetryPolicy(), workers=1, broadcaster=broadcaster, clock=lambda: 1000.0)
    jobs = [queue.enqueue(store_id, delay=index * 60) for index, store_id in enumerate(["a", "b", "c"])]
    assert [job.run_at for job in jobs] == [1000.0, 1060.0, 1120.0]
    assert all(job.state is JobState.PENDING for job in jobs)
    await queue.close()


@pytest.mark.asyncio
async def test_job_fails_after_all_attempts(broadcaster):
    calls = []
    failures = []

    async def handler(store_id):
        calls.append(store_id)
        raise RuntimeError("marketplace down")

    queue = JobQueue(
        handler,
        policy=RetryPolicy(attempts=3, base_delay=0.01),
        workers=1,
        broadcaster=broadcaster,
        on_failed=lambda job, exc: failures.append(job),
    )
    queue.start()
    job = queue.enqueue("s1")
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.close()

    assert calls == ["s1", "s1", "s1"]
    assert job.state is JobState.FAILED
    assert job.attempt == 3
    assert job.retry_delays == [0.01, 0.02]
    assert failures == [job]
    errors = [event for event in broadcaster.events if event.type == "error"]
    assert len(errors) == 1
    assert errors[0].message == "Failed order processing for store s1 after 3 attempts: marketplace down"
    assert not any(event.type == "success" for event in broadcaster.events)


@pytest.mark.asyncio
async def test_job_succeeds_after_retry(broadcaster):
    attempts = []

    async def handler(store_id):
        attempts.append(store_id)
        if len(attempts) == 1:
            raise RuntimeError("flaky")
        return Result()

    queue = JobQueue(handler, policy=RetryPolicy(attempts=3, base_delay=0.01), workers=2, broadcaster=broadcaster)
    queue.start()
    job = queue.enqueue("s1")
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.close()

    assert job.state is JobState.SUCCEEDED
    assert job.history == [
        JobState.PENDING,
        JobState.RUNNING,
        JobState.RETRY_SCHEDULED,
        JobState.RUNNING,
        JobState.SUCCEEDED,
    ]
    assert [event.type for event in broadcaster.events] == ["success"]
    assert broadcaster.events[0].message.startswith("Completed order processing for store s1\nOrders: 1 created")


@pytest.mark.asyncio
async def test_delayed_job_waits_for_its_timer(broadcaster):
    ran = []

    async def handler(store_id):
        ran.append(store_id)
        return Result()

    queue = JobQueue(handler, policy=RetryPolicy(), workers=1, broadcaster=broadcaster)
    queue.start()
    queue.enqueue("later", delay=0.05)
    queue.enqueue("now")
    await asyncio.sleep(0.01)
    assert ran == ["now"]
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.close()
    assert ran == ["now", "later"]


@pytest.mark.asyncio
async def test_run_pass_continues_after_store_failure(broadcaster):
    async def handler(store_id):
        if store_id == "bad":
            raise RuntimeError("boom")
        return Result()

    summary = await run_pass(["good", "bad"], handler, kind="order", broadcaster=broadcaster)

    assert list(summary.results) == ["good"]
    assert summary.failed_stores == {"bad": "boom"}
    assert summary.as_dict()["succeeded"] == 1
    assert [event.type for event in broadcaster.events] == ["info", "success", "error", "success"]


@pytest.mark.asyncio
async def test_run_pass_without_stores(broadcaster):
    async def handler(store_id):
        raise AssertionError("not called")

    summary = await run_pass([], handler, kind="product", broadcaster=broadcaster)
    assert summary.stores == 0
    assert broadcaster.events[0].message == "No active stores found to process"
