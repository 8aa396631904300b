# Overview: Error taxonomy shared by the workflow services and mapped to HTTP by the routes.

"""
Workflow errors.

Every service failure is one of these. Routes return ``exc.to_dict()`` with
``exc.status_code``; nothing else about the failure leaks to the caller.

AlreadyProcessed and ConcurrentModification carry ``refresh: true`` so a UI
can reload its view instead of showing an error banner.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for expected, caller-facing failures."""

    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.details}


class NotFound(WorkflowError):
    code = "not_found"
    status_code = 404


class Forbidden(WorkflowError):
    code = "forbidden"
    status_code = 403


class ValidationError(WorkflowError):
    """400-level input problem."""
    code = "validation_error"
    status_code = 400


class InvalidStateTransition(WorkflowError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, message: str, current_status: str, details: dict | None = None):
        super().__init__(message, {"current_status": current_status, **(details or {})})
        self.current_status = current_status


class AlreadyProcessed(InvalidStateTransition):
    """Another actor already moved the transaction to a terminal state."""
    code = "already_processed"

    def __init__(self, message: str, current_status: str):
        super().__init__(message, current_status, {"refresh": True})


class InvalidFulfillmentTransition(WorkflowError):
    code = "invalid_fulfillment_transition"
    status_code = 409

    def __init__(self, message: str, current_status: str, requested_status: str):
        super().__init__(message, {
            "current_status": current_status,
            "requested_status": requested_status,
        })
        self.current_status = current_status
        self.requested_status = requested_status


class ConcurrentModification(WorkflowError):
    code = "concurrent_modification"
    status_code = 409

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, {"refresh": True, **(details or {})})
