from factories import make_item
from orchestrator import ItemQueue


def test_fifo_with_dedup() -> None:
    queue = ItemQueue([make_item("a"), make_item("b"), make_item("a")])
    assert queue.size() == 2
    assert queue.dequeue().id == "a"
    # a dequeued id may be queued again
    assert queue.enqueue(make_item("a"))
    assert not queue.enqueue(make_item("b"))
    assert [queue.dequeue().id, queue.dequeue().id] == ["b", "a"]
    assert queue.dequeue() is None


def test_drain_reports_dropped() -> None:
    queue = ItemQueue([make_item("x"), make_item("y")])
    assert queue.drain() == 2
    assert queue.size() == 0
    assert queue.enqueue(make_item("x"))
