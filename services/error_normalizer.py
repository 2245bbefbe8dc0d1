"""
Translate service failures into error envelopes with HTTP status codes.

The environment is passed in explicitly. Outside production the envelope
carries the error type, details and stack trace; in production it carries
only a safe message.
"""
import traceback
from typing import Tuple

from utils.exceptions import CrudError, InternalError
from .envelope import ResponseEnvelope

ENVIRONMENTS = frozenset({'development', 'production'})

INTERNAL_ERROR_MESSAGE = 'Internal server error'


def _format_stack(error: BaseException) -> str:
    return ''.join(traceback.format_exception(type(error), error, error.__traceback__))


class ErrorNormalizer:
    """Maps exceptions to (status code, ResponseEnvelope)."""

    def __init__(self, environment: str = 'development') -> None:
        if environment not in ENVIRONMENTS:
            raise ValueError(f'environment must be one of {sorted(ENVIRONMENTS)}, got: {environment}')
        self.environment = environment

    @classmethod
    def from_config(cls, config) -> "ErrorNormalizer":
        return cls(config.environment)

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    def normalize(self, error: BaseException) -> Tuple[int, ResponseEnvelope]:
        """
        Build the error response for ``error``.

        Anything that is not a CrudError is reported as an internal error.

        Returns:
            Tuple of (HTTP status code, error envelope)
        """
        if isinstance(error, CrudError):
            crud_error = error
        else:
            crud_error = InternalError(str(error) or type(error).__name__, cause=error)

        status_code = crud_error.status_code
        envelope = ResponseEnvelope(message=crud_error.message, success_status=False, data=None)

        if self.is_production:
            if status_code >= 500:
                envelope.message = INTERNAL_ERROR_MESSAGE
            return status_code, envelope

        envelope.error = {
            'type': type(crud_error).__name__,
            'message': crud_error.message,
            **crud_error.details,
        }
        root = getattr(crud_error, 'cause', None) or error
        envelope.stack = _format_stack(root)
        return status_code, envelope
