"""
Value conversion between DynamoDB attribute values and JSON-friendly Python.

boto3 returns every number as ``Decimal`` and every set as ``set``, and it
refuses ``float`` on the way in. These helpers convert at the store boundary
so the service layer only ever sees plain Python values.
"""
import json
from decimal import Decimal
from typing import Any, Dict, Optional


def to_dynamo(value: Any) -> Any:
    """
    Convert a Python value into something boto3 can serialize.

    Floats become ``Decimal`` (via ``str`` to keep their printed precision);
    mappings and sequences are converted recursively.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {to_dynamo(v) for v in value}
    return value


def from_dynamo(value: Any) -> Any:
    """
    Convert a value read from DynamoDB into plain Python.

    Integral decimals become ``int``, others ``float``; sets become sorted lists.
    """
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((from_dynamo(v) for v in value), key=str)
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return from_dynamo(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


def dumps(data: Any) -> str:
    """Serialize a response payload to JSON."""
    return json.dumps(data, default=_json_default)


def json_response(
    status_code: int,
    body: Any,
    headers: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """
    Build an API Gateway proxy integration response.

    Args:
        status_code: HTTP status code
        body: JSON-serializable response body
        headers: Optional extra headers

    Returns:
        Response dictionary understood by API Gateway
    """
    response_headers = {'Content-Type': 'application/json'}
    if headers:
        response_headers.update(headers)
    return {
        'statusCode': int(status_code),
        'headers': response_headers,
        'body': dumps(body),
    }
