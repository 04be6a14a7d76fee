import threading

import mercantile
import pytest

from imageservice_mbtiles.pipeline.queues import ClosableQueue, OutstandingWork, QueueClosed, TaskQueue


def test_closable_queue_yields_items_then_stops() -> None:
    channel: ClosableQueue[int] = ClosableQueue()
    for value in (1, 2, 3):
        channel.put(value)
    channel.close()
    assert list(channel) == [1, 2, 3]


def test_close_releases_every_consumer() -> None:
    channel: ClosableQueue[int] = ClosableQueue()
    seen = []
    lock = threading.Lock()

    def consume() -> None:
        for item in channel:
            with lock:
                seen.append(item)

    threads = [threading.Thread(target=consume) for _ in range(4)]
    for thread in threads:
        thread.start()
    for value in range(10):
        channel.put(value)
    channel.close()
    for thread in threads:
        thread.join(timeout=5)

    assert not any(thread.is_alive() for thread in threads)
    assert sorted(seen) == list(range(10))


def test_put_after_close_raises() -> None:
    channel: ClosableQueue[int] = ClosableQueue()
    channel.close()
    channel.close()
    with pytest.raises(QueueClosed):
        channel.put(1)


def test_outstanding_work_calls_back_at_zero() -> None:
    drained = []
    work = OutstandingWork(on_drained=lambda: drained.append(True))
    work.add(2)
    assert work.done() == 1
    assert drained == []
    assert work.done() == 0
    assert drained == [True]
    assert work.wait(timeout=0)


def test_outstanding_work_rejects_extra_done() -> None:
    work = OutstandingWork()
    with pytest.raises(RuntimeError):
        work.done()


def test_task_queue_closes_when_last_task_completes() -> None:
    tasks = TaskQueue()
    tile = mercantile.Tile(x=0, y=0, z=0)
    with tasks.hold():
        assert tasks.submit([tile]) == 1
    assert not tasks.closed

    consumed = [task.tile for task in _take(tasks, 1)]
    assert consumed == [tile]
    assert tasks.complete() == 0
    assert tasks.closed
    assert list(tasks) == []
    assert tasks.submitted == 1


def test_empty_seed_closes_immediately() -> None:
    tasks = TaskQueue()
    with tasks.hold():
        tasks.submit([])
    assert tasks.closed
    assert tasks.outstanding.pending == 0


def test_children_submitted_before_completion_keep_queue_open() -> None:
    tasks = TaskQueue()
    parent = mercantile.Tile(x=0, y=0, z=0)
    with tasks.hold():
        tasks.submit([parent])
    next(iter(tasks))

    tasks.submit(mercantile.children(parent))
    tasks.complete()

    assert not tasks.closed
    assert tasks.outstanding.pending == 4


def test_submit_after_close_raises() -> None:
    tasks = TaskQueue()
    tasks.close()
    with pytest.raises(QueueClosed):
        tasks.submit([mercantile.Tile(x=0, y=0, z=0)])


def _take(tasks: TaskQueue, count: int):
    iterator = iter(tasks)
    return [next(iterator) for _ in range(count)]
