import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class NotFoundError(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found'
    default_code = 'not_found'


class ForbiddenError(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Forbidden'
    default_code = 'forbidden'


class ConflictError(APIException):
    """Legal request that collides with the current state of a resource."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflict'
    default_code = 'conflict'


class InvalidStateError(APIException):
    """The requested transition is not allowed from the current status."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid state for this operation'
    default_code = 'invalid_state'


def custom_exception_handler(exc, context):
    """
    Custom exception handler for consistent error responses.
    """
    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            'Unhandled error in %s',
            view.__class__.__name__ if view else 'unknown view',
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return Response(
            {
                'success': False,
                'error': {
                    'status_code': status.HTTP_500_INTERNAL_SERVER_ERROR,
                    'code': 'server_error',
                    'message': get_error_message(status.HTTP_500_INTERNAL_SERVER_ERROR),
                    'details': {},
                },
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response.data = {
        'success': False,
        'error': {
            'status_code': response.status_code,
            'code': get_error_code(exc, response),
            'message': get_error_message(response.status_code, exc),
            'details': response.data if isinstance(response.data, dict) else {'error': response.data},
        }
    }

    return response


def get_error_code(exc, response):
    """Stable, machine-checkable kind of the failure."""
    if isinstance(exc, APIException):
        return exc.default_code
    return {
        404: 'not_found',
        403: 'permission_denied',
    }.get(response.status_code, 'error')


def get_error_message(status_code, exc=None):
    """Get a human-readable error message."""
    # Domain failures carry their own message; framework ones get a generic label.
    if isinstance(exc, (NotFoundError, ForbiddenError, ConflictError, InvalidStateError)):
        return str(exc.detail)

    messages = {
        400: 'Bad Request',
        401: 'Authentication Required',
        403: 'Permission Denied',
        404: 'Not Found',
        405: 'Method Not Allowed',
        409: 'Conflict',
        500: 'Internal Server Error',
    }

    return messages.get(status_code, 'An error occurred')
