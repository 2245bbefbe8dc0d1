"""
Handler decorators for error handling, logging, and response formatting.
"""
import functools
import uuid
from typing import Callable, Any, Dict, Optional

from config import get_config
from logger_config import get_logger
from services.error_normalizer import ErrorNormalizer
from utils.serialization import json_response

logger = get_logger(__name__)

CORRELATION_HEADER = 'X-Correlation-Id'


def api_handler(
    func: Optional[Callable[[Any, Any], Dict[str, Any]]] = None,
    *,
    environment: Optional[str] = None
):
    """
    Decorator for API Gateway Lambda handler functions.

    Provides:
    - Request correlation IDs for logging and the response headers
    - Error responses for exceptions the handler let escape
    - Logging context

    Usable bare (``@api_handler``) or with an explicit environment
    (``@api_handler(environment='production')``). Without one, the
    environment is read from the process config when an error occurs.

    Args:
        func: The handler function to decorate
        environment: ``development`` or ``production``; gates error detail

    Returns:
        Decorated handler function
    """
    def decorate(handler: Callable[[Any, Any], Dict[str, Any]]) -> Callable[[Any, Any], Dict[str, Any]]:
        @functools.wraps(handler)
        def wrapper(event: Any, context: Any) -> Dict[str, Any]:
            correlation_id = str(uuid.uuid4())

            logger.info(
                f"Handler {handler.__name__} invoked",
                extra={
                    "correlation_id": correlation_id,
                    "handler": handler.__name__,
                    "request_id": getattr(context, "aws_request_id", None) if context else None
                }
            )

            try:
                response = handler(event, context)
            except Exception as e:
                normalizer = ErrorNormalizer(environment or get_config().environment)
                status_code, envelope = normalizer.normalize(e)
                log = logger.error if status_code >= 500 else logger.warning
                log(
                    f"Handler {handler.__name__} failed: {str(e)}",
                    extra={"correlation_id": correlation_id},
                    exc_info=status_code >= 500
                )
                response = json_response(status_code, envelope.to_dict())
            else:
                logger.info(
                    f"Handler {handler.__name__} completed with status {response.get('statusCode')}",
                    extra={"correlation_id": correlation_id}
                )

            response.setdefault('headers', {})[CORRELATION_HEADER] = correlation_id
            return response

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
