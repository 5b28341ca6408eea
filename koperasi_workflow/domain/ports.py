"""Persistence port implemented by the in-memory and SQLAlchemy stores"""

import uuid
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from typing import Iterable, Iterator, List, Optional

from koperasi_workflow.domain.models import Request, RequestStatus, RequestType


class RequestStore(ABC):
    """
    Storage for request aggregates.

    ``atomic_many`` is the only way to modify stored requests: it yields the
    aggregates under their per-request locks (taken in id order) and persists
    the ones that changed when the block exits without an exception. A block
    that raises leaves every stored request untouched.
    """

    @abstractmethod
    def add(self, request: Request) -> Request:
        """Persist a newly submitted request"""

    @abstractmethod
    def get(self, request_id: uuid.UUID) -> Request:
        """Detached copy of a request; raises NotFound"""

    @abstractmethod
    def atomic_many(self, request_ids: Iterable[uuid.UUID]) -> AbstractContextManager:
        """Unit of work over several requests, yielded as a dict keyed by id"""

    @contextmanager
    def atomic(self, request_id: uuid.UUID) -> Iterator[Request]:
        """Read-validate-mutate-write unit of work for one request"""
        with self.atomic_many([request_id]) as requests:
            yield requests[request_id]

    @abstractmethod
    def list_requests(
        self,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        owner_id: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Request]:
        """Requests matching every given filter, newest submission first"""

    @abstractmethod
    def last_number(self, number_prefix: str) -> Optional[str]:
        """Highest request number starting with ``number_prefix``"""
