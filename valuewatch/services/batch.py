"""
Sequential batch execution with rate-limit pauses.

Work items run one at a time, in groups of `batch_size`, with a short pause
between items and a longer one between groups. One item failing is recorded
and never stops the run.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from valuewatch.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_INTER_BATCH_DELAY_MS,
    DEFAULT_INTER_REQUEST_DELAY_MS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SchedulingPolicy:
    batch_size: int = DEFAULT_BATCH_SIZE
    inter_request_delay_ms: int = DEFAULT_INTER_REQUEST_DELAY_MS
    inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.inter_request_delay_ms < 0 or self.inter_batch_delay_ms < 0:
            raise ValueError("delays must be non-negative")


@dataclass
class BatchResult:
    """Outcome for one work item."""
    identifier: str
    success: bool
    record: Any = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"identifier": self.identifier, "success": self.success, **self.extra}
        if self.success:
            result["record"] = self.record
        else:
            result["error"] = self.error
        return result


class SequentialExecutor:
    """
    Runs a per-item function over identifiers under a SchedulingPolicy.

    request_stop() lets the item in progress finish and then ends the run;
    items not yet started are left out of the results.
    """

    def __init__(self, policy: Optional[SchedulingPolicy] = None, sleep: Callable[[float], None] = time.sleep):
        self.policy = policy or SchedulingPolicy()
        self._sleep = sleep
        self._stop_requested = False

    def request_stop(self) -> None:
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _pause(self, delay_ms: int) -> None:
        if delay_ms > 0:
            self._sleep(delay_ms / 1000.0)

    def run(self, identifiers: Sequence[str], work: Callable[[str], T]) -> List[BatchResult]:
        results: List[BatchResult] = []
        total = len(identifiers)
        size = self.policy.batch_size
        total_batches = (total + size - 1) // size

        for start in range(0, total, size):
            batch = identifiers[start:start + size]
            logger.info("Processing batch %d/%d (%d items)", start // size + 1, total_batches, len(batch))

            for offset, identifier in enumerate(batch):
                if self._stop_requested:
                    logger.info("Stop requested; %d items not processed", total - len(results))
                    return results
                try:
                    record = work(identifier)
                    results.append(BatchResult(identifier, True, record=record))
                except Exception as e:
                    logger.error("Failed to process %s: %s", identifier, e)
                    results.append(BatchResult(identifier, False, error=str(e)))

                if offset < len(batch) - 1:
                    self._pause(self.policy.inter_request_delay_ms)

            if start + size < total and not self._stop_requested:
                logger.debug("Waiting %dms before next batch", self.policy.inter_batch_delay_ms)
                self._pause(self.policy.inter_batch_delay_ms)

        return results
