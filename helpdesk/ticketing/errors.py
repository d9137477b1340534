import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class HelpdeskError(Exception):
    """Base error raised by the ticketing services.

    Carries a machine readable ``code`` and the HTTP status the API layer
    should answer with.
    """
    code = 'INTERNAL_ERROR'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message, details=None, code=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def as_dict(self):
        payload = {'code': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class NotFound(HelpdeskError):
    code = 'NOT_FOUND'
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource, identifier=None):
        message = f"{resource} not found" if identifier is None else f"{resource} with id '{identifier}' not found"
        super().__init__(message, {'resource': resource, 'id': identifier} if identifier is not None else None)


class ValidationFailed(HelpdeskError):
    code = 'VALIDATION_ERROR'
    status_code = status.HTTP_400_BAD_REQUEST


class Forbidden(HelpdeskError):
    code = 'FORBIDDEN'
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message='You do not have permission to perform this action'):
        super().__init__(message)


class Conflict(HelpdeskError):
    code = 'CONFLICT'
    status_code = status.HTTP_409_CONFLICT


class AlreadyExists(Conflict):
    code = 'ALREADY_EXISTS'


class InvalidStatusTransition(HelpdeskError):
    code = 'INVALID_STATUS_TRANSITION'
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, current, requested):
        super().__init__(
            f"Cannot change status from '{current}' to '{requested}'",
            {'from': current, 'to': requested},
        )


class WeeklyLimitExceeded(HelpdeskError):
    code = 'WEEKLY_LIMIT_EXCEEDED'
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, limit):
        super().__init__(
            f"Weekly ticket limit reached. You can create at most {limit} tickets per week.",
            {'limit': limit},
        )


class ExternalServiceError(HelpdeskError):
    code = 'EXTERNAL_SERVICE_ERROR'
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, service, message):
        super().__init__(f"{service}: {message}", {'service': service})


def api_exception_handler(exc, context):
    """DRF exception handler that renders HelpdeskError as {"error": {...}}."""
    if isinstance(exc, HelpdeskError):
        if exc.status_code >= 500:
            logger.error("Unhandled helpdesk error in %s: %s", context.get('view'), exc.message)
        return Response({'error': exc.as_dict()}, status=exc.status_code)
    return exception_handler(exc, context)
