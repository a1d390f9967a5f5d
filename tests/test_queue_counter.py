from lidarloc.queue_counter import QueueCounter


def test_counts_inputs():
    counter = QueueCounter()
    for _ in range(5):
        counter.on_input()
    assert counter.enqueue == 5
    assert counter.dequeue == 0


def test_processed_line():
    counter = QueueCounter()
    counter.on_input()
    counter.on_input()
    counter.on_input()
    assert counter.on_processed() == "(Processed/Input): (1 / 3)"
    assert counter.on_processed() == "(Processed/Input): (2 / 3)"
    assert counter.dequeue == 2
    assert counter.enqueue == 3