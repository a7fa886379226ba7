# cpops/services/errors.py
"""
Typed failures raised by the lifecycle engine.

Every error is raised synchronously inside the caller's transaction; the
caller's `with conn.begin():` block rolls the whole unit back. Nothing here
is retried or swallowed.
"""
from typing import Any, Dict, List, Optional


class LifecycleError(Exception):
    code = "lifecycle_error"
    http_status = 400

    def __init__(self, message: str, **payload: Any):
        super().__init__(message)
        self.message = message
        self.payload: Dict[str, Any] = payload

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.payload}


class NotFound(LifecycleError):
    code = "not_found"
    http_status = 404


class BadRequest(LifecycleError):
    code = "bad_request"
    http_status = 400


class StatusLinked(LifecycleError):
    """A status (or team type) is still referenced and no remediation was chosen."""
    code = "status_linked"
    http_status = 409

    def __init__(self, message: str, options: List[str], code: Optional[str] = None):
        super().__init__(message, options=list(options))
        if code:
            self.code = code
        self.options = list(options)


class InvalidReassignTarget(LifecycleError):
    code = "invalid_reassign_target"
    http_status = 400


class MinimumCardinalityViolation(LifecycleError):
    code = "minimum_cardinality"
    http_status = 400
