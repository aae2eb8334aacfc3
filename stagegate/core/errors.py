"""Typed failures raised by the review services.

Every failure subclasses ``ReviewError`` (itself a ``ValueError``) and carries a
stable ``kind`` string so callers branch on the failure instead of parsing
messages. ``benign`` marks outcomes that are expected under concurrent
multi-reviewer use and should be rendered as "already recorded" rather than as
an error.
"""


class ReviewError(ValueError):
    kind = "ReviewError"
    status_code = 400
    benign = False

    def __init__(self, message: str | None = None, **context):
        super().__init__(message or self.default_message)
        self.context = context

    default_message = "Review operation failed"

    def to_dict(self) -> dict:
        body = {
            "error": self.kind,
            "detail": str(self),
            "benign": self.benign,
        }
        if self.context:
            body["context"] = self.context
        return body


class NotFound(ReviewError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


# Configuration errors, rejected before any write.


class NotAReviewer(ReviewError):
    kind = "NotAReviewer"
    status_code = 403
    default_message = "You are not assigned as a reviewer for this stage"


class StageNotActive(ReviewError):
    kind = "StageNotActive"
    status_code = 409
    benign = True
    default_message = "This stage has moved on"


class AlreadyDecided(ReviewError):
    kind = "AlreadyDecided"
    status_code = 409
    benign = True
    default_message = "Your decision for this stage was already recorded"


class InvalidStage(ReviewError):
    kind = "InvalidStage"
    status_code = 422
    default_message = "Stage does not exist in this project's workflow"


class DuplicateAssignment(ReviewError):
    kind = "DuplicateAssignment"
    status_code = 409
    default_message = "User is already a reviewer for this stage"


class InvalidWorkflow(ReviewError):
    kind = "InvalidWorkflow"
    status_code = 422
    default_message = "Invalid workflow definition"


class WorkflowInUse(ReviewError):
    kind = "WorkflowInUse"
    status_code = 409
    default_message = "Workflow is referenced by a project"


# Validation.


class MissingNotesOnRejection(ReviewError):
    kind = "MissingNotesOnRejection"
    status_code = 422
    default_message = "Notes are required when requesting changes"


# Final approval misuse.


class AlreadyFinalized(ReviewError):
    kind = "AlreadyFinalized"
    status_code = 409
    default_message = "Final approval was already granted"


class NotAllStagesApproved(ReviewError):
    kind = "NotAllStagesApproved"
    status_code = 422
    default_message = "All workflow stages must be approved before final approval"


class NotFinalApprover(ReviewError):
    kind = "NotFinalApprover"
    status_code = 403
    default_message = "Only the project creator or an organization admin can give final approval"


# Configuration warning: a stage with no assigned reviewers can never reach
# quorum. Raised when someone tries to approve such a stage, and reported as a
# warning (not raised) when the stage is opened.


class ZeroQuorumStage(ReviewError):
    kind = "ZeroQuorumStage"
    status_code = 422
    default_message = "Stage has no assigned reviewers and cannot reach quorum"


class LedgerMismatch(ReviewError):
    kind = "LedgerMismatch"
    status_code = 500
    default_message = "Stage approval counter does not match the approval log"


class ReviewInProgress(ReviewError):
    kind = "ReviewInProgress"
    status_code = 409
    default_message = "Mockup is under review; its project cannot change"
