"""In-process request store, used by tests and single-process deployments"""

import copy
import threading
import uuid
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from koperasi_workflow.domain.exceptions import ConflictRetry, NotFound
from koperasi_workflow.domain.models import Request, RequestStatus, RequestType
from koperasi_workflow.domain.ports import RequestStore


class InMemoryRequestStore(RequestStore):
    """Dictionary-backed store with one lock per request"""

    def __init__(self):
        self._requests: Dict[uuid.UUID, Request] = {}
        self._locks: Dict[uuid.UUID, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def add(self, request: Request) -> Request:
        with self._registry_lock:
            if request.id in self._requests:
                raise ConflictRetry(f"Request {request.id} already exists")
            if any(r.number == request.number for r in self._requests.values()):
                raise ConflictRetry(f"Request number {request.number} already exists")
            request.version = 1
            self._requests[request.id] = copy.deepcopy(request)
            self._locks[request.id] = threading.Lock()
        return request

    def get(self, request_id: uuid.UUID) -> Request:
        with self._registry_lock:
            stored = self._requests.get(request_id)
            if stored is None:
                raise NotFound(f"Request {request_id} not found")
            return copy.deepcopy(stored)

    @contextmanager
    def atomic_many(self, request_ids: Iterable[uuid.UUID]) -> Iterator[Dict[uuid.UUID, Request]]:
        ordered = sorted(set(request_ids))
        with self._registry_lock:
            locks = [self._locks.get(request_id) for request_id in ordered]
        for request_id, lock in zip(ordered, locks):
            if lock is None:
                raise NotFound(f"Request {request_id} not found")

        with ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            # Work on copies so a failed block never touches stored state
            originals = {request_id: self._requests[request_id] for request_id in ordered}
            working = {request_id: copy.deepcopy(request) for request_id, request in originals.items()}
            yield working
            with self._registry_lock:
                for request_id, request in working.items():
                    if request == originals[request_id]:
                        continue
                    request.version += 1
                    self._requests[request_id] = copy.deepcopy(request)

    def list_requests(
        self,
        request_type: Optional[RequestType] = None,
        status: Optional[RequestStatus] = None,
        owner_id: Optional[str] = None,
        parent_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Request]:
        with self._registry_lock:
            matches = [
                copy.deepcopy(r)
                for r in self._requests.values()
                if (request_type is None or r.request_type == request_type)
                and (status is None or r.status == status)
                and (owner_id is None or r.owner_id == owner_id)
                and (parent_id is None or r.parent_id == parent_id)
            ]
        matches.sort(key=lambda r: (r.submitted_at, r.number), reverse=True)
        return matches[:limit] if limit is not None else matches

    def last_number(self, number_prefix: str) -> Optional[str]:
        with self._registry_lock:
            numbers = [r.number for r in self._requests.values() if r.number.startswith(number_prefix)]
        return max(numbers) if numbers else None
