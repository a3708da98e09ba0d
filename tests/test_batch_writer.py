"""
Tests for size-bounded batch writes
"""

import pytest

from mealpass.services.batch_writer import BatchWriter

def test_flushes_at_batch_size_and_on_close():
    batches = []
    writer = BatchWriter(lambda items: batches.append(list(items)), batch_size=3)

    for i in range(7):
        writer.add(i)
    assert batches == [[0, 1, 2], [3, 4, 5]]

    report = writer.close()
    assert batches[-1] == [6]
    assert report.written == 7
    assert report.batches == 3
    assert report.ok

def test_failed_batch_is_reported_and_later_batches_still_flush():
    written = []

    def flush(items):
        if 2 in items:
            raise RuntimeError("quota exceeded")
        written.extend(items)

    with BatchWriter(flush, batch_size=2) as writer:
        for i in range(6):
            writer.add(i)

    report = writer.report
    assert written == [0, 1, 4, 5]
    assert report.written == 4
    assert report.failed == 2
    assert not report.ok
    assert "quota exceeded" in report.errors[0]

def test_closed_writer_rejects_items():
    writer = BatchWriter(lambda items: None, batch_size=2)
    writer.close()
    with pytest.raises(RuntimeError):
        writer.add(1)

def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        BatchWriter(lambda items: None, batch_size=0)
