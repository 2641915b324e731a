from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """
    工作流领域异常基类。

    中文注释:
    - code 为稳定的机器可读标识（前端/调用方据此判断“已完成，无需重试”等语义）。
    - details 会被平铺进 HTTP 响应体，便于排查（例如 current/target 状态）。
    """

    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "type": self.code, **self.details}


class PermissionDenied(WorkflowError):
    code = "permission_denied"
    status_code = 403

    def __init__(self, role: str, resource: str, action: str) -> None:
        super().__init__(
            f"Role {role} may not {action} {resource}",
            role=role,
            resource=resource,
            action=action,
        )


class InvalidTransition(WorkflowError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Invalid transition: {current} -> {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class RevisionNotAllowed(InvalidTransition):
    """作者只能在 REVISION 状态提交修回稿。"""

    code = "revision_not_allowed"

    def __init__(self, current: str) -> None:
        super().__init__(
            current,
            "UNDER_REVIEW",
            message=f"Revision can only be submitted while the submission is in REVISION (current: {current})",
        )


class AlreadyDecided(WorkflowError):
    code = "already_decided"
    status_code = 409

    def __init__(self, submission_id: str, round_no: int) -> None:
        super().__init__(
            f"Round {round_no} of submission {submission_id} already has a decision",
            submission_id=submission_id,
            round_no=round_no,
        )


class AlreadySubmitted(WorkflowError):
    code = "already_submitted"
    status_code = 409


class AlreadyDeclined(AlreadySubmitted):
    code = "already_declined"

    def __init__(self, review_id: str) -> None:
        super().__init__("Review has already been declined", review_id=review_id)


class DeadlineAlreadyCompleted(AlreadySubmitted):
    code = "deadline_already_completed"

    def __init__(self, deadline_id: str) -> None:
        super().__init__(f"Deadline {deadline_id} is already completed", deadline_id=deadline_id)


class InsufficientReviews(WorkflowError):
    code = "insufficient_reviews"
    status_code = 409

    def __init__(self, *, required: int, submitted: int, pending: int) -> None:
        super().__init__(
            f"Decision requires {required} submitted reviews with none pending "
            f"(submitted={submitted}, pending={pending})",
            required=required,
            submitted=submitted,
            pending=pending,
        )


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, errors=list(errors or []))
        self.errors = list(errors or [])

    @classmethod
    def for_field(cls, field_name: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field_name, "message": message}])


class NotFound(WorkflowError):
    code = "not_found"
    status_code = 404

    def __init__(self, kind: str, object_id: str) -> None:
        super().__init__(f"{kind} not found", kind=kind, id=object_id)


class ConcurrencyConflict(WorkflowError):
    code = "conflict"
    status_code = 409

    def __init__(self, submission_id: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Submission {submission_id} was modified concurrently",
            submission_id=submission_id,
        )


class SubmissionInUse(WorkflowError):
    code = "submission_in_use"
    status_code = 409

    def __init__(self, submission_id: str, *, decisions: int, articles: int) -> None:
        super().__init__(
            "Submission has dependent decision/article records and cannot be deleted",
            submission_id=submission_id,
            decisions=decisions,
            articles=articles,
        )
