"""
Approval gate: who may approve or reject a request right now.

The outstanding stage is derived from the request's approval records every
time, so there is no counter to drift out of sync with the history.
"""
from typing import Iterable

from fieldservice import roles
from fieldservice.models import ApprovalRecord, ApprovalStage, ApprovalOutcome


def sales_approved(records: Iterable[ApprovalRecord]) -> bool:
    return any(
        r.stage == ApprovalStage.SALES and r.outcome == ApprovalOutcome.APPROVED
        for r in records
    )


def outstanding_stage(creator_role: str, records: Iterable[ApprovalRecord]) -> str:
    """SALES while a sales-created request lacks its sales approval, SERVICE otherwise"""
    if roles.is_sales_creator(creator_role) and not sales_approved(records):
        return ApprovalStage.SALES
    return ApprovalStage.SERVICE


def approvers_for(stage: str) -> frozenset:
    if stage == ApprovalStage.SALES:
        return roles.SALES_APPROVERS
    return roles.SERVICE_APPROVERS


def can_approve(creator_role: str, caller_role: str, records: Iterable[ApprovalRecord]) -> bool:
    return caller_role in approvers_for(outstanding_stage(creator_role, list(records)))


def is_final_approval(stage: str) -> bool:
    """Only the service-stage approval moves the request to APPROVED"""
    return stage == ApprovalStage.SERVICE
