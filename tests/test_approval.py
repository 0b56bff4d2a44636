import pytest

from fieldservice.exceptions import (
    AwaitingSalesApproval, PermissionDenied, InvalidReason, InvalidTransition, InvalidField, NotFound
)
from fieldservice.models import RequestStatus, ApprovalStage, ApprovalOutcome
from fieldservice.services import approval_gate, audit_trail


def submit_as(lifecycle, user, seed, **kwargs):
    data = {"type": "INSTALLATION", "customer_id": seed.customer.id, "region_id": seed.north.id}
    data.update(kwargs)
    return lifecycle(user).submit(**data)


def test_submit_numbers_requests_sequentially(seed, lifecycle):
    first = submit_as(lifecycle, seed.users.salesman, seed)
    second = submit_as(lifecycle, seed.users.service_admin, seed)

    assert first.status == RequestStatus.PENDING_APPROVAL
    assert first.created_by_role == seed.users.salesman.role
    prefix = first.request_number.rsplit("-", 1)[0]
    assert first.request_number.startswith("SR-")
    assert second.request_number == f"{prefix}-00002"


def test_submit_validates_input(seed, lifecycle):
    with pytest.raises(InvalidField):
        submit_as(lifecycle, seed.users.salesman, seed, type="REPAINT")
    with pytest.raises(NotFound):
        submit_as(lifecycle, seed.users.salesman, seed, customer_id=999)
    with pytest.raises(PermissionDenied):
        submit_as(lifecycle, seed.users.tech_a, seed)


def test_salesman_request_needs_sales_then_service_approval(seed, lifecycle):
    users = seed.users
    request = submit_as(lifecycle, users.salesman, seed)

    with pytest.raises(AwaitingSalesApproval):
        lifecycle(users.service_admin).approve(request.id)
    assert lifecycle(users.service_admin).get(request.id).status == RequestStatus.PENDING_APPROVAL
    assert audit_trail.approvals_for(lifecycle(users.service_admin).db, request.id) == []

    after_sales = lifecycle(users.sales_admin).approve(request.id, comments="Customer verified")
    assert after_sales.status == RequestStatus.PENDING_APPROVAL
    assert after_sales.approved_by is None

    # Sales admin cannot also give the service approval
    with pytest.raises(PermissionDenied):
        lifecycle(users.sales_admin).approve(request.id)

    approved = lifecycle(users.service_manager).approve(request.id)
    assert approved.status == RequestStatus.APPROVED
    assert approved.approved_by == users.service_manager.id
    assert [(a.stage, a.approver_role) for a in approved.approvals] == [
        (ApprovalStage.SALES, users.sales_admin.role),
        (ApprovalStage.SERVICE, users.service_manager.role),
    ]


def test_super_admin_can_approve_both_stages(seed, lifecycle):
    request = submit_as(lifecycle, seed.users.salesman, seed)
    admin = lifecycle(seed.users.super_admin)

    assert admin.approve(request.id).status == RequestStatus.PENDING_APPROVAL
    assert admin.approve(request.id).status == RequestStatus.APPROVED


def test_service_request_needs_single_approval(seed, lifecycle):
    request = submit_as(lifecycle, seed.users.service_lead, seed)
    approved = lifecycle(seed.users.service_lead).approve(request.id)

    assert approved.status == RequestStatus.APPROVED
    assert approval_gate.outstanding_stage(request.created_by_role, approved.approvals) == ApprovalStage.SERVICE


def test_reject_requires_comments_and_is_terminal(seed, lifecycle):
    request = submit_as(lifecycle, seed.users.salesman, seed)
    sales = lifecycle(seed.users.sales_admin)

    with pytest.raises(InvalidReason):
        sales.reject(request.id, comments="   ")

    rejected = sales.reject(request.id, comments="Duplicate of an earlier request")
    assert rejected.status == RequestStatus.REJECTED
    assert rejected.approvals[-1].outcome == ApprovalOutcome.REJECTED
    assert rejected.approvals[-1].stage == ApprovalStage.SALES

    with pytest.raises(InvalidTransition):
        lifecycle(seed.users.super_admin).approve(request.id)


def test_approve_unknown_request(seed, lifecycle):
    with pytest.raises(NotFound):
        lifecycle(seed.users.super_admin).approve(12345)
