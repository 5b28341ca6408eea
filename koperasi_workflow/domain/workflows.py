"""Static workflow definitions: the ordered stage sequence per request type"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from koperasi_workflow.domain.models import (
    ExecutionKind,
    RequestStatus,
    RequestType,
    Role,
    Stage,
    StageKind,
)


@dataclass(frozen=True)
class StageDefinition:
    """One step of a workflow: who acts, and what status the request shows while waiting"""

    stage: Stage
    authorized_role: Role
    kind: StageKind
    pending_status: RequestStatus
    execution_kind: Optional[ExecutionKind] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    request_type: RequestType
    sequence: Tuple[StageDefinition, ...]
    success_status: RequestStatus

    @property
    def terminal_statuses(self) -> FrozenSet[RequestStatus]:
        return frozenset({self.success_status, RequestStatus.REJECTED, RequestStatus.CANCELLED})


_DSP_REVIEW = StageDefinition(Stage.DSP, Role.DSP, StageKind.DECISION, RequestStatus.UNDER_REVIEW_DSP)
_KETUA_REVIEW = StageDefinition(Stage.KETUA, Role.KETUA, StageKind.DECISION, RequestStatus.UNDER_REVIEW_KETUA)

_REGISTRY: Dict[RequestType, WorkflowDefinition] = {
    RequestType.LOAN: WorkflowDefinition(
        request_type=RequestType.LOAN,
        sequence=(
            _DSP_REVIEW,
            _KETUA_REVIEW,
            StageDefinition(Stage.PENGAWAS, Role.PENGAWAS, StageKind.DECISION, RequestStatus.UNDER_REVIEW_PENGAWAS),
            StageDefinition(
                Stage.DISBURSEMENT,
                Role.SHOPKEEPER,
                StageKind.EXECUTION,
                RequestStatus.APPROVED_PENDING_DISBURSEMENT,
                ExecutionKind.DISBURSEMENT,
            ),
            StageDefinition(
                Stage.AUTHORIZATION,
                Role.KETUA,
                StageKind.EXECUTION,
                RequestStatus.PENDING_AUTHORIZATION,
                ExecutionKind.AUTHORIZATION,
            ),
        ),
        success_status=RequestStatus.DISBURSED,
    ),
    RequestType.DEPOSIT: WorkflowDefinition(
        request_type=RequestType.DEPOSIT,
        sequence=(_DSP_REVIEW, _KETUA_REVIEW),
        success_status=RequestStatus.ACTIVE,
    ),
    RequestType.DEPOSIT_CHANGE: WorkflowDefinition(
        request_type=RequestType.DEPOSIT_CHANGE,
        sequence=(_DSP_REVIEW, _KETUA_REVIEW),
        success_status=RequestStatus.APPROVED,
    ),
    RequestType.WITHDRAWAL: WorkflowDefinition(
        request_type=RequestType.WITHDRAWAL,
        sequence=(
            _DSP_REVIEW,
            _KETUA_REVIEW,
            StageDefinition(
                Stage.SHOPKEEPER,
                Role.SHOPKEEPER,
                StageKind.EXECUTION,
                RequestStatus.APPROVED_WAITING_DISBURSEMENT,
                ExecutionKind.DISBURSEMENT,
            ),
            StageDefinition(
                Stage.KETUA_AUTH,
                Role.KETUA,
                StageKind.EXECUTION,
                RequestStatus.DISBURSEMENT_IN_PROGRESS,
                ExecutionKind.AUTHORIZATION,
            ),
        ),
        success_status=RequestStatus.COMPLETED,
    ),
}


def definition_for(request_type: RequestType) -> WorkflowDefinition:
    return _REGISTRY[RequestType(request_type)]


def sequence_for(request_type: RequestType) -> Tuple[StageDefinition, ...]:
    return definition_for(request_type).sequence


def stage_definition(request_type: RequestType, stage: Stage) -> StageDefinition:
    for definition in sequence_for(request_type):
        if definition.stage == stage:
            return definition
    raise KeyError(f"{stage} is not part of the {request_type} workflow")


def next_stage(request_type: RequestType, stage: Stage) -> Optional[StageDefinition]:
    """Stage after ``stage``, or None when ``stage`` is the last one"""
    sequence = sequence_for(request_type)
    for index, definition in enumerate(sequence):
        if definition.stage == stage:
            return sequence[index + 1] if index + 1 < len(sequence) else None
    raise KeyError(f"{stage} is not part of the {request_type} workflow")


def is_terminal(request_type: RequestType, status: RequestStatus) -> bool:
    return status in definition_for(request_type).terminal_statuses


def cancellable_statuses(request_type: RequestType) -> FrozenSet[RequestStatus]:
    """SUBMITTED plus the waiting statuses of decision stages"""
    pending = {d.pending_status for d in sequence_for(request_type) if d.kind == StageKind.DECISION}
    return frozenset(pending | {RequestStatus.SUBMITTED})
