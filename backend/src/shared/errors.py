"""
Typed failures returned to callers.

Every domain precondition raises one of these from inside a transaction body,
which aborts the whole transaction with no partial writes.
"""
from typing import Optional


class MarketplaceError(Exception):
    """Base class for failures that carry a caller-visible code and reason."""

    code = 'internal'
    status_code = 500
    default_reason = None

    def __init__(self, message: str = '', reason: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.reason = reason or self.default_reason

    def to_dict(self) -> dict:
        body = {'error': self.code, 'message': self.message}
        if self.reason:
            body['reason'] = self.reason
        return body


class Unauthenticated(MarketplaceError):
    code = 'unauthenticated'
    status_code = 401


class InvalidArgument(MarketplaceError):
    code = 'invalid-argument'
    status_code = 400


class NotFound(MarketplaceError):
    code = 'not-found'
    status_code = 404


class UserNotFound(NotFound):
    default_reason = 'user_not_found'


class PermissionDenied(MarketplaceError):
    code = 'permission-denied'
    status_code = 403


class FailedPrecondition(MarketplaceError):
    code = 'failed-precondition'
    status_code = 409


class InsufficientFunds(FailedPrecondition):
    default_reason = 'insufficient_funds'


class InvalidTransition(FailedPrecondition):
    default_reason = 'wrong_state'


class TaskNotOpen(FailedPrecondition):
    default_reason = 'task_not_open'


class NotEligible(FailedPrecondition):
    default_reason = 'not_eligible'


class Internal(MarketplaceError):
    code = 'internal'
    status_code = 500
