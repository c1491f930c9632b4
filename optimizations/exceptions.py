"""
Request- and execution-level errors raised by the optimization services.

Views turn these into the standard error envelope
{'error': {'code', 'message', 'detail', 'status'}}.
"""
from rest_framework import status


class OptimizationError(Exception):
    code = 'internal_error'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal error'

    def __init__(self, message=None, detail=None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'detail': self.detail,
            'status': self.status_code,
        }


class SiteNotFound(OptimizationError):
    code = 'site_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Site not found'


class ExecutionNotFound(OptimizationError):
    code = 'execution_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Execution not found'


class InvalidPayload(OptimizationError):
    code = 'invalid_payload'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid payload'


class EnqueueFailed(OptimizationError):
    code = 'enqueue_failed'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'Could not enqueue execution'


class ExecutionFailed(OptimizationError):
    code = 'execution_failed'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Execution failed'


class ScanNotFound(OptimizationError):
    code = 'scan_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Scan job not found'


class RouteNotFound(OptimizationError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'The requested resource was not found.'
