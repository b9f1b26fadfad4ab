"""
HRIS Core - Cases Router

API endpoints for routed cases (NTE, Resolution, COE, OT, PAN, Envelope, Award).

Endpoints:
- POST /cases/{kind} - Submit a case to an ordered approver panel
- GET /cases/{kind} - List cases visible to the caller
- GET /cases/{kind}/approver-candidates - Eligible approvers for a group filter
- GET /cases/{kind}/{case_id} - Case with steps and history
- POST /cases/{kind}/{case_id}/decisions - Approve or decline the caller's step
- POST /cases/{kind}/{case_id}/reopen - Return a declined case to Draft
- POST /cases/{kind}/{case_id}/resubmit - Start a new routing cycle
- POST /cases/{kind}/{case_id}/acknowledge - Subject sign-off
- POST /cases/{kind}/{case_id}/close - Close a finished case
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from hris_core.dependencies import get_case_facade, get_current_actor
from hris_core.models.case import CaseStatus
from hris_core.schemas.access import ActorResponse, ApproverCandidatesResponse
from hris_core.schemas.case import (
    CaseListResponse,
    CaseResponse,
    CaseSubmitRequest,
    CloseRequest,
    DecisionRequest,
    DecisionResponse,
    ResubmitRequest,
)
from hris_core.services.case_facades import CaseFacade
from hris_core.services.org_directory import Actor
from hris_core.services.routing_engine import DecisionOutcome
from hris_core.services.scope_resolver import GroupFilter
from hris_core.utils.error_handling import NotAuthorizedException
from hris_core.utils.permissions import Permission


router = APIRouter(prefix="/cases", tags=["Cases"])


def _decision_response(outcome: DecisionOutcome) -> DecisionResponse:
    return DecisionResponse(
        case=CaseResponse.model_validate(outcome.case),
        previous_status=outcome.previous_status,
        new_status=outcome.new_status,
        satisfied_approver_id=outcome.satisfied_approver_id,
        became_approved=outcome.became_approved,
        became_declined=outcome.became_declined,
        next_approver_ids=outcome.next_approver_ids,
    )


@router.post("/{kind}", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def submit_case(
    request: CaseSubmitRequest,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    """Submit a case. Approver order is the routing order."""
    case = await facade.submit(
        actor,
        subject_employee_id=request.subject_employee_id,
        approver_ids=request.approver_ids,
        business_unit_id=request.business_unit_id,
        title=request.title,
        payload=request.payload,
    )
    return CaseResponse.model_validate(case)


@router.get("/{kind}", response_model=CaseListResponse)
async def list_cases(
    status_filter: Optional[List[CaseStatus]] = Query(None, alias="status"),
    pending_for_me: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    """List cases inside the caller's scope, plus cases they are involved in."""
    cases = await facade.list_cases(actor, statuses=status_filter, pending_for_me=pending_for_me)
    return CaseListResponse(
        cases=[CaseResponse.model_validate(c) for c in cases],
        total=len(cases),
    )


@router.get("/{kind}/approver-candidates", response_model=ApproverCandidatesResponse)
async def list_approver_candidates(
    business_unit_id: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    exclude_subject: bool = Query(True),
    subject_employee_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    """Active users matching a group filter who may approve this kind of case."""
    if not facade.can_request(actor):
        raise NotAuthorizedException(
            f"You do not have permission to file a {facade.config.label}.",
            required_permission=f"{facade.config.resource.value}:{Permission.CREATE.value}",
        )
    candidates = facade.approver_candidates(
        GroupFilter(
            business_unit_id=business_unit_id,
            department_id=department_id,
            exclude_subject=exclude_subject,
        ),
        subject_employee_id,
    )
    return ApproverCandidatesResponse(
        candidates=[ActorResponse.model_validate(c) for c in candidates],
        total=len(candidates),
    )


@router.get("/{kind}/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    return CaseResponse.model_validate(await facade.get(actor, case_id))


@router.post("/{kind}/{case_id}/decisions", response_model=DecisionResponse)
async def decide_case(
    case_id: uuid.UUID,
    request: DecisionRequest,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    """Approve or decline. A reason is required when declining."""
    outcome = await facade.decide(actor, case_id, request.decision, request.reason)
    return _decision_response(outcome)


@router.post("/{kind}/{case_id}/reopen", response_model=CaseResponse)
async def reopen_case(
    case_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    return CaseResponse.model_validate(await facade.reopen(actor, case_id))


@router.post("/{kind}/{case_id}/resubmit", response_model=CaseResponse)
async def resubmit_case(
    case_id: uuid.UUID,
    request: ResubmitRequest,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    case = await facade.resubmit(actor, case_id, request.approver_ids)
    return CaseResponse.model_validate(case)


@router.post("/{kind}/{case_id}/acknowledge", response_model=CaseResponse)
async def acknowledge_case(
    case_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    return CaseResponse.model_validate(await facade.acknowledge(actor, case_id))


@router.post("/{kind}/{case_id}/close", response_model=CaseResponse)
async def close_case(
    case_id: uuid.UUID,
    request: CloseRequest,
    actor: Actor = Depends(get_current_actor),
    facade: CaseFacade = Depends(get_case_facade),
):
    return CaseResponse.model_validate(await facade.close(actor, case_id, request.reason))
