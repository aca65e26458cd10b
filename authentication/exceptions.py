# exceptions.py
import logging
import traceback

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


# =============== DOMAIN ERRORS ===============

class NotFound(exceptions.APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'


class InvalidState(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request is not valid for the current state.'
    default_code = 'invalid_state'


class InvalidTransition(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'invalid_transition'

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f'Cannot transition from "{current}" to "{requested}".')


class Forbidden(exceptions.APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'forbidden'


class InvalidOtp(exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid or expired OTP.'
    default_code = 'invalid_otp'


class TooManyOtpAttempts(exceptions.APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = 'Too many incorrect OTP attempts. Ask the store to reissue the OTP.'
    default_code = 'too_many_otp_attempts'


class Conflict(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The resource was modified by another request. Reload and try again.'
    default_code = 'conflict'


class PreconditionFailed(exceptions.APIException):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_detail = 'The resource has changed since it was last fetched.'
    default_code = 'precondition_failed'


# =============== HANDLER ===============

def _message_for(exc, response):
    if isinstance(exc, exceptions.ValidationError):
        return 'Validation error'
    detail = getattr(exc, 'detail', None)
    if isinstance(detail, str):
        return str(detail)
    if response.status_code == 401:
        return 'Authentication required'
    if response.status_code == 403:
        return 'Permission denied'
    if response.status_code == 404:
        return 'Resource not found'
    return 'An error occurred'


def custom_exception_handler(exc, context):
    """
    Render every API error as {"success": false, "message": ..., "errors": ...}
    """
    response = exception_handler(exc, context)

    if response is not None:
        body = {'success': False, 'message': _message_for(exc, response)}
        if isinstance(exc, exceptions.ValidationError):
            body['errors'] = response.data
        if response.status_code >= 500:
            logger.error(f"API error {response.status_code}: {exc}")
        else:
            logger.info(f"API error {response.status_code}: {body['message']}")
        response.data = body
        return response

    if isinstance(exc, DjangoValidationError):
        logger.info(f"Validation Error: {exc}")
        errors = exc.message_dict if hasattr(exc, 'error_dict') else {'non_field_errors': exc.messages}
        return Response({
            'success': False,
            'message': 'Validation error',
            'errors': errors,
        }, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, IntegrityError):
        logger.warning(f"Integrity Error: {exc}")
        return Response({
            'success': False,
            'message': 'A record with this value already exists.',
        }, status=status.HTTP_409_CONFLICT)

    logger.exception(f"Unexpected Error: {exc}")
    body = {'success': False, 'message': 'Internal server error'}
    if settings.DEBUG:
        body['stack'] = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
