"""
Typed failures raised by the order, escrow, dispute and audit services.

Every failure kind carries a stable ``default_code`` so that clients can tell
"you are not allowed" apart from "this is already resolved" or "please fill in
the refund amount". They subclass DRF's ``APIException`` so views can let them
propagate and the exception handler below renders them consistently.
"""
import logging

from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


logger = logging.getLogger(__name__)


class MarketplaceError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The request could not be processed."
    default_code = 'marketplace_error'


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "The requested record does not exist."
    default_code = 'not_found'


class Unauthorized(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."
    default_code = 'unauthorized'


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The submitted data is invalid."
    default_code = 'validation_error'


class InvalidState(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This action is not allowed in the current state."
    default_code = 'invalid_state'


class InvalidTransition(InvalidState):
    default_detail = "This status change is not allowed."
    default_code = 'invalid_transition'


class Conflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The request conflicts with an existing record."
    default_code = 'conflict'


class AlreadyExists(Conflict):
    default_detail = "The record already exists."
    default_code = 'already_exists'


class AlreadyFinalized(InvalidState):
    default_detail = "The escrow has already been paid out."
    default_code = 'already_finalized'


class AlreadyResolved(InvalidState):
    default_detail = "The dispute has already been resolved."
    default_code = 'already_resolved'


def _error_code(exc):
    if isinstance(exc, MarketplaceError):
        return exc.default_code
    if isinstance(exc, Http404):
        return NotFound.default_code
    if isinstance(exc, exceptions.ValidationError):
        return ValidationError.default_code
    if isinstance(exc, exceptions.PermissionDenied):
        return Unauthorized.default_code
    return getattr(exc, 'default_code', 'error')


def marketplace_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return response

    code = _error_code(exc)
    view = context.get('view')
    logger.info(
        "Request rejected",
        extra={
            'code': code,
            'view': view.__class__.__name__ if view else None,
        }
    )

    if isinstance(exc, exceptions.ValidationError):
        response.data = {
            'status': 'error',
            'code': code,
            'message': ValidationError.default_detail,
            'errors': response.data,
        }
    else:
        detail = response.data.get('detail', '') if isinstance(response.data, dict) else response.data
        response.data = {
            'status': 'error',
            'code': code,
            'message': str(detail),
        }
    return response
