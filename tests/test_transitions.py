"""Pure transition function: no database involved."""
from types import SimpleNamespace

import pytest

from fieldservice import roles
from fieldservice.exceptions import (
    InvalidTransition, AwaitingSalesApproval, PermissionDenied, SessionAlreadyOpen, NoOpenSession
)
from fieldservice.models import RequestStatus, ApprovalStage, ApprovalOutcome
from fieldservice.services.lifecycle import next_state, Operation, Effect, TransitionContext, ALLOWED_FROM


def ctx(role, caller_id=1, **kwargs):
    return TransitionContext(caller_id=caller_id, caller_role=role, **kwargs)


def record(stage, outcome=ApprovalOutcome.APPROVED):
    return SimpleNamespace(stage=stage, outcome=outcome)


class TestSubmit:
    def test_submit_creates_pending_request(self):
        result = next_state(None, Operation.SUBMIT, ctx(roles.SALESMAN))
        assert result.new_status == RequestStatus.PENDING_APPROVAL
        assert result.effects == ()

    def test_submit_from_draft(self):
        assert next_state(RequestStatus.DRAFT, Operation.SUBMIT, ctx(roles.SERVICE_ADMIN)).new_status == \
            RequestStatus.PENDING_APPROVAL

    def test_technician_cannot_submit(self):
        with pytest.raises(PermissionDenied):
            next_state(None, Operation.SUBMIT, ctx(roles.TECHNICIAN))


class TestApproval:
    def test_service_created_request_single_approval(self):
        result = next_state(
            RequestStatus.PENDING_APPROVAL, Operation.APPROVE,
            ctx(roles.SERVICE_TEAM_LEAD, creator_role=roles.SERVICE_MANAGER)
        )
        assert result.new_status == RequestStatus.APPROVED
        assert result.approval_stage == ApprovalStage.SERVICE
        assert result.effects == (Effect.APPEND_APPROVAL,)

    def test_sales_created_request_first_approval_keeps_pending(self):
        result = next_state(
            RequestStatus.PENDING_APPROVAL, Operation.APPROVE,
            ctx(roles.SALES_ADMIN, creator_role=roles.SALESMAN)
        )
        assert result.new_status == RequestStatus.PENDING_APPROVAL
        assert result.approval_stage == ApprovalStage.SALES

    def test_service_tier_cannot_skip_sales_approval(self):
        with pytest.raises(AwaitingSalesApproval) as exc:
            next_state(
                RequestStatus.PENDING_APPROVAL, Operation.APPROVE,
                ctx(roles.SERVICE_ADMIN, creator_role=roles.SALESMAN)
            )
        assert isinstance(exc.value, InvalidTransition)
        assert exc.value.status_code == 409

    def test_service_approval_after_sales_approval(self):
        result = next_state(
            RequestStatus.PENDING_APPROVAL, Operation.APPROVE,
            ctx(
                roles.SERVICE_MANAGER,
                creator_role=roles.SALES_TEAM_LEAD,
                approval_records=(record(ApprovalStage.SALES),)
            )
        )
        assert result.new_status == RequestStatus.APPROVED
        assert result.approval_stage == ApprovalStage.SERVICE

    def test_sales_admin_cannot_give_service_approval(self):
        with pytest.raises(PermissionDenied):
            next_state(
                RequestStatus.PENDING_APPROVAL, Operation.APPROVE,
                ctx(roles.SALES_ADMIN, creator_role=roles.SALESMAN, approval_records=(record(ApprovalStage.SALES),))
            )

    def test_reject_at_sales_stage_by_wrong_tier(self):
        with pytest.raises(PermissionDenied):
            next_state(
                RequestStatus.PENDING_APPROVAL, Operation.REJECT,
                ctx(roles.SERVICE_ADMIN, creator_role=roles.SALESMAN)
            )

    def test_reject_is_terminal(self):
        result = next_state(
            RequestStatus.PENDING_APPROVAL, Operation.REJECT,
            ctx(roles.SUPER_ADMIN, creator_role=roles.SALESMAN)
        )
        assert result.new_status == RequestStatus.REJECTED
        for operation in ALLOWED_FROM:
            with pytest.raises(InvalidTransition):
                next_state(RequestStatus.REJECTED, operation, ctx(roles.SUPER_ADMIN))


class TestFieldWork:
    def test_assign_requires_privilege(self):
        with pytest.raises(PermissionDenied):
            next_state(RequestStatus.APPROVED, Operation.ASSIGN, ctx(roles.SERVICE_TEAM_LEAD))
        assert next_state(RequestStatus.APPROVED, Operation.ASSIGN, ctx(roles.SERVICE_MANAGER)).new_status == \
            RequestStatus.ASSIGNED

    def test_reassign_keeps_status(self):
        assigned = next_state(RequestStatus.ASSIGNED, Operation.REASSIGN, ctx(roles.SERVICE_ADMIN))
        assert assigned.new_status == RequestStatus.ASSIGNED
        assert assigned.effects == (Effect.APPEND_ASSIGNMENT,)

        in_progress = next_state(
            RequestStatus.IN_PROGRESS, Operation.REASSIGN, ctx(roles.SERVICE_ADMIN, has_open_session=True)
        )
        assert in_progress.new_status == RequestStatus.IN_PROGRESS
        assert in_progress.effects == (Effect.CLOSE_SESSION_ADMIN, Effect.APPEND_ASSIGNMENT)

    def test_start_work_only_by_assigned_technician(self):
        with pytest.raises(PermissionDenied):
            next_state(RequestStatus.ASSIGNED, Operation.START_WORK, ctx(roles.TECHNICIAN, caller_id=7, assigned_technician_id=8))
        result = next_state(
            RequestStatus.ASSIGNED, Operation.START_WORK, ctx(roles.TECHNICIAN, caller_id=8, assigned_technician_id=8)
        )
        assert result.new_status == RequestStatus.IN_PROGRESS
        assert result.effects == (Effect.OPEN_SESSION,)

    def test_start_work_with_open_session(self):
        with pytest.raises(SessionAlreadyOpen):
            next_state(
                RequestStatus.IN_PROGRESS, Operation.START_WORK,
                ctx(roles.TECHNICIAN, caller_id=8, assigned_technician_id=8, has_open_session=True)
            )

    def test_stop_work_without_session(self):
        with pytest.raises(NoOpenSession):
            next_state(
                RequestStatus.IN_PROGRESS, Operation.STOP_WORK,
                ctx(roles.TECHNICIAN, caller_id=8, assigned_technician_id=8)
            )

    def test_stop_work_completes_work(self):
        result = next_state(
            RequestStatus.IN_PROGRESS, Operation.STOP_WORK,
            ctx(roles.TECHNICIAN, caller_id=8, assigned_technician_id=8, has_open_session=True)
        )
        assert result.new_status == RequestStatus.WORK_COMPLETED

    def test_consume_stock_keeps_status(self):
        result = next_state(
            RequestStatus.WORK_COMPLETED, Operation.CONSUME_STOCK,
            ctx(roles.TECHNICIAN, caller_id=8, assigned_technician_id=8)
        )
        assert result.new_status == RequestStatus.WORK_COMPLETED
        with pytest.raises(InvalidTransition):
            next_state(RequestStatus.ASSIGNED, Operation.CONSUME_STOCK, ctx(roles.SUPER_ADMIN))

    def test_rework_goes_back_to_assigned(self):
        result = next_state(RequestStatus.WORK_COMPLETED, Operation.REASSIGN_FOR_REWORK, ctx(roles.SERVICE_MANAGER))
        assert result.new_status == RequestStatus.ASSIGNED

    def test_acknowledge_completion(self):
        with pytest.raises(PermissionDenied):
            next_state(RequestStatus.WORK_COMPLETED, Operation.ACKNOWLEDGE_COMPLETION, ctx(roles.TECHNICIAN))
        result = next_state(RequestStatus.WORK_COMPLETED, Operation.ACKNOWLEDGE_COMPLETION, ctx(roles.SUPER_ADMIN))
        assert result.new_status == RequestStatus.COMPLETED
        assert result.effects == (Effect.APPEND_COMPLETION,)


@pytest.mark.parametrize("status", RequestStatus.ALL)
def test_every_result_is_a_known_status(status):
    caller = ctx(
        roles.SUPER_ADMIN, caller_id=1, creator_role=roles.SERVICE_ADMIN,
        assigned_technician_id=1, has_open_session=status == RequestStatus.IN_PROGRESS
    )
    for operation in ALLOWED_FROM:
        try:
            result = next_state(status, operation, caller)
        except (InvalidTransition, PermissionDenied, SessionAlreadyOpen, NoOpenSession):
            continue
        assert result.new_status in RequestStatus.ALL
        assert status in ALLOWED_FROM[operation]


def test_unknown_operation():
    with pytest.raises(InvalidTransition):
        next_state(RequestStatus.APPROVED, "teleport", ctx(roles.SUPER_ADMIN))
