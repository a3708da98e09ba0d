"""
Size-bounded batched writes.

Store write batches are capped (Firestore allows 500 operations), so callers
push records through a ``BatchWriter`` that flushes automatically and keeps a
running report instead of hand-counting batch sizes in business logic.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchReport:
    written: int = 0
    failed: int = 0
    batches: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class BatchWriter(Generic[T]):
    """Buffers items and hands them to ``flush`` in groups of ``batch_size``.

    Each flush is all-or-nothing. A failed flush is recorded in the report and
    the writer keeps going, so later batches are not lost because of an
    earlier one.
    """

    def __init__(self, flush: Callable[[Sequence[T]], None], batch_size: int = 450):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._flush = flush
        self.batch_size = batch_size
        self._buffer: List[T] = []
        self.report = BatchReport()
        self._closed = False

    def add(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("BatchWriter is closed")
        self._buffer.append(item)
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._buffer:
            return
        pending, self._buffer = self._buffer, []
        self.report.batches += 1
        try:
            self._flush(pending)
        except Exception as e:
            self.report.failed += len(pending)
            self.report.errors.append(f"Batch {self.report.batches} ({len(pending)} records): {e}")
            logger.error(f"Batch {self.report.batches} failed, {len(pending)} records not written: {e}")
            return
        self.report.written += len(pending)

    def close(self) -> BatchReport:
        if not self._closed:
            self.flush()
            self._closed = True
        return self.report

    def __enter__(self) -> "BatchWriter[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
