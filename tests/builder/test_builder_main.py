from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from inhouse.builder import main as builder_mod
from inhouse.builder.main import BuildQueueProcessor
from inhouse.config import Settings
from inhouse.core.records import BuildState
from inhouse.naming import CLEARED_MESSAGE
from inhouse.queue.store import BuildQueueStore, QueueFetchError
from inhouse.runtime.errors import ContainerRuntimeError, ImageBuildError

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class _BrokenStore:
    def fetch_next(self):
        raise QueueFetchError("Failed to fetch the next build: connection refused")


def _processor(settings: Settings, runtime, store=None, sleeps: list[float] | None = None) -> BuildQueueProcessor:
    recorded = sleeps if sleeps is not None else []
    return BuildQueueProcessor(
        settings=settings,
        store=store or BuildQueueStore(settings=settings),
        runtime=runtime,
        sleep=recorded.append,
    )


def _enqueue(store: BuildQueueStore, minutes: int = 0, **kwargs):
    values = {
        "repo_url": "git://x/y",
        "full_name": "x/y",
        "commit": "abc",
        "created_at": T0 + timedelta(minutes=minutes),
    }
    values.update(kwargs)
    return store.enqueue(**values)


@pytest.mark.usefixtures("queue_db")
def test_successful_build_rolls_out_new_instance(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)
    processor = _processor(settings, runtime, store)

    outcome = processor.tick()

    stored = store.get(queued.id)
    assert stored is not None
    assert stored.state == BuildState.SUCCESS
    assert stored.attempts == 1
    assert stored.is_successful is True
    assert stored.message == "Successfully built"
    assert runtime.builds == [("git://x/y", "x/y")]

    assert outcome.rollout is not None
    assert outcome.rollout.healthy is True
    assert outcome.rollout.superseded == ()
    assert outcome.rollout.instance_name.startswith("x_y_")
    assert runtime.killed == []
    assert runtime.running_names() == {outcome.rollout.instance_name}


@pytest.mark.usefixtures("queue_db")
def test_five_failures_end_in_failure(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)
    runtime.build_results = [ImageBuildError(f"Image build failed: attempt {n}") for n in range(1, 6)]
    processor = _processor(settings, runtime, store)

    states = []
    for _ in range(5):
        outcome = processor.tick()
        assert outcome.rollout is None
        states.append(store.get(queued.id).state)  # type: ignore[union-attr]

    stored = store.get(queued.id)
    assert stored is not None
    assert states == [BuildState.RETRYING] * 4 + [BuildState.FAILURE]
    assert stored.attempts == 5
    assert stored.is_successful is False
    assert stored.message == "Image build failed: attempt 5"

    assert processor.tick().idle
    assert len(runtime.builds) == 5
    assert runtime.started == []


@pytest.mark.usefixtures("queue_db")
def test_unexpected_build_errors_count_as_attempts(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    head = _enqueue(store, minutes=0)
    newer = _enqueue(store, minutes=1, repo_url="git://a/b", full_name="a/b", commit="def")
    runtime.build_results = [ConnectionError("Connection reset by peer") for _ in range(5)]
    processor = _processor(settings, runtime, store)

    for _ in range(10):
        if processor.tick().idle:
            break

    stored = store.get(head.id)
    assert stored is not None
    assert stored.state == BuildState.FAILURE
    assert stored.attempts == 5
    assert stored.message == "Connection reset by peer"
    assert store.get(newer.id).is_successful is True  # type: ignore[union-attr]
    assert runtime.builds[-1] == ("git://a/b", "a/b")


@pytest.mark.usefixtures("queue_db")
def test_blank_full_name_does_not_block_the_queue(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    head = _enqueue(store, minutes=0, full_name="")
    newer = _enqueue(store, minutes=1, repo_url="git://a/b", full_name="a/b", commit="def")
    processor = _processor(settings, runtime, store)

    for _ in range(10):
        if processor.tick().idle:
            break

    stored = store.get(head.id)
    assert stored is not None
    assert stored.state == BuildState.FAILURE
    assert stored.attempts == 5
    assert "full_name must be provided" in (stored.message or "")
    assert store.get(newer.id).is_successful is True  # type: ignore[union-attr]
    assert runtime.builds == [("git://a/b", "a/b")]


@pytest.mark.usefixtures("queue_db")
def test_terminal_record_selected_after_limit_raise_is_retired(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)
    store.save(replace(queued, state=BuildState.FAILURE, attempts=5, message="boom"))
    settings.builder_max_attempts = 7
    processor = _processor(settings, runtime, store)

    outcome = processor.tick()

    assert outcome.error is not None
    stored = store.get(queued.id)
    assert stored is not None
    assert stored.state == BuildState.FAILURE
    assert stored.attempts == 7
    assert stored.message == "boom"
    assert runtime.builds == []
    assert processor.tick().idle


@pytest.mark.usefixtures("queue_db")
def test_success_clears_duplicate_commit(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    first = _enqueue(store, minutes=0)
    second = _enqueue(store, minutes=1)
    processor = _processor(settings, runtime, store)

    processor.tick()

    cleared = store.get(second.id)
    assert cleared is not None
    assert cleared.is_successful is True
    assert cleared.state == BuildState.SUCCESS
    assert cleared.message == CLEARED_MESSAGE
    assert cleared.attempts == 0
    assert store.get(first.id).is_successful is True  # type: ignore[union-attr]

    assert processor.tick().idle
    assert len(runtime.builds) == 1


@pytest.mark.usefixtures("queue_db")
def test_unhealthy_rollout_leaves_record_and_old_instances(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)
    runtime.add_instance("old-1", "x_y_1", "x_y")
    runtime.start_running = False
    settings.rollout_reclaim_failed_instance = False
    processor = _processor(settings, runtime, store)

    outcome = processor.tick()

    assert outcome.rollout is not None
    assert outcome.rollout.healthy is False
    assert runtime.killed == []
    assert "old-1" in runtime.containers
    stored = store.get(queued.id)
    assert stored is not None
    assert stored.state == BuildState.SUCCESS
    assert stored.attempts == 1


@pytest.mark.usefixtures("queue_db")
def test_records_are_processed_oldest_first(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    _enqueue(store, minutes=3, full_name="a/third", commit="3")
    _enqueue(store, minutes=1, full_name="a/first", commit="1")
    _enqueue(store, minutes=2, full_name="a/second", commit="2")
    processor = _processor(settings, runtime, store)

    while not processor.tick().idle:
        pass

    assert [image for _, image in runtime.builds] == ["a/first", "a/second", "a/third"]


@pytest.mark.usefixtures("queue_db")
def test_idle_tick_does_not_touch_attempts(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    processor = _processor(settings, runtime, store)

    outcome = processor.tick()

    assert outcome.idle
    assert runtime.builds == []


@pytest.mark.usefixtures("queue_db")
def test_rollout_errors_are_contained(settings: Settings, runtime) -> None:
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)

    def broken_start(spec):
        raise ContainerRuntimeError(f"Failed to start instance {spec.name}")

    runtime.start_instance = broken_start
    processor = _processor(settings, runtime, store)

    outcome = processor.tick()

    assert outcome.error is not None
    assert "Failed to start instance" in outcome.error
    assert store.get(queued.id).state == BuildState.SUCCESS  # type: ignore[union-attr]


@pytest.mark.usefixtures("queue_db")
def test_long_build_output_is_truncated(settings: Settings, runtime) -> None:
    settings.builder_message_max_chars = 10
    store = BuildQueueStore(settings=settings)
    queued = _enqueue(store)
    runtime.build_results = ["x" * 50 + "0123456789"]

    _processor(settings, runtime, store).tick()

    assert store.get(queued.id).message == "0123456789"  # type: ignore[union-attr]


def test_fetch_failure_propagates(settings: Settings, runtime) -> None:
    processor = _processor(settings, runtime, store=_BrokenStore())

    with pytest.raises(QueueFetchError):
        processor.tick()


@pytest.mark.usefixtures("queue_db")
def test_run_forever_sleeps_between_cycles_until_stopped(monkeypatch, settings: Settings, runtime) -> None:
    sleeps: list[float] = []
    processor = _processor(settings, runtime, sleeps=sleeps)
    monkeypatch.setattr(processor, "_install_signal_handlers", lambda: None)
    original_tick = processor.tick
    ticks: list[int] = []

    def counting_tick():
        ticks.append(1)
        if len(ticks) == 3:
            processor.stop()
        return original_tick()

    processor.tick = counting_tick  # type: ignore[method-assign]
    processor.run_forever()

    assert len(ticks) == 3
    assert sleeps == [0.1, 0.1]


def test_main_exits_non_zero_on_fetch_failure(monkeypatch, settings: Settings, runtime) -> None:
    monkeypatch.setattr(
        builder_mod,
        "BuildQueueProcessor",
        lambda: _processor(settings, runtime, store=_BrokenStore()),
    )

    assert builder_mod.main(["--once"]) == 1
