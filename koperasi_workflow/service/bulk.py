"""Bulk processing: dispatch one atomic operation per id and collect the outcomes"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from koperasi_workflow.domain.exceptions import DomainException
from koperasi_workflow.infrastructure.observability.metrics import record_bulk_outcome

logger = logging.getLogger(__name__)


@dataclass
class BulkFailure:
    """One item that could not be processed"""

    id: uuid.UUID
    error: str  # DomainException.code
    reason: str


@dataclass
class BulkResult:
    succeeded: List[uuid.UUID] = field(default_factory=list)
    failed: List[BulkFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


def _attempt(operation: Callable[[uuid.UUID], object], request_id: uuid.UUID) -> Optional[BulkFailure]:
    try:
        operation(request_id)
    except DomainException as e:
        return BulkFailure(id=request_id, error=e.code, reason=str(e))
    except Exception as e:
        # Unexpected errors are reported per item so the rest of the batch still runs
        logger.exception("Bulk item failed unexpectedly", extra={"request_id": str(request_id)})
        return BulkFailure(id=request_id, error="internal_error", reason=str(e))
    return None


def run_bulk(
    request_ids: Iterable[uuid.UUID],
    operation: Callable[[uuid.UUID], object],
    max_workers: int,
    operation_name: str,
) -> BulkResult:
    """
    Apply ``operation`` to every id concurrently.

    Each item commits or fails on its own; there is no cross-item
    transaction. Results keep the input order.

    Args:
        request_ids: Ids to process (duplicates are processed twice)
        operation: Single-item atomic operation, e.g. a bound engine method
        max_workers: Upper bound on concurrent items
        operation_name: Metric label

    Returns:
        BulkResult with succeeded ids and BulkFailure entries
    """
    ids = list(request_ids)
    result = BulkResult()
    if not ids:
        return result

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(ids)))) as pool:
        outcomes = list(pool.map(lambda request_id: _attempt(operation, request_id), ids))

    for request_id, failure in zip(ids, outcomes):
        if failure is None:
            result.succeeded.append(request_id)
        else:
            result.failed.append(failure)

    record_bulk_outcome(operation_name, len(result.succeeded), len(result.failed))
    logger.info(
        "Bulk operation finished",
        extra={
            "operation": operation_name,
            "succeeded": len(result.succeeded),
            "failed": len(result.failed),
        },
    )
    return result
