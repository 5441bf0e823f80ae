"""
Response Builder Utility

Provides consistent API Gateway response formatting.
"""

import json
from typing import Dict, Any, Optional

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, content-type, terra-signature, x-terra-signature",
    "Access-Control-Allow-Methods": "GET,HEAD,POST,OPTIONS",
}


def build_response(
    status_code: int, body: Optional[Dict[str, Any]], headers: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """
    Build standardized API Gateway response.

    Args:
        status_code: HTTP status code
        body: Response body dictionary, or None for an empty body
        headers: Optional additional headers

    Returns:
        API Gateway response dictionary
    """
    default_headers = {"Content-Type": "application/json", **CORS_HEADERS}

    if headers:
        default_headers.update(headers)

    return {
        "statusCode": status_code,
        "headers": default_headers,
        "body": json.dumps(body, default=str) if body is not None else "",
    }


def build_error_response(
    status_code: int,
    error_message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build standardized error response.

    Webhook senders only look at the status code, so the body stays a flat
    ``{"error": ...}`` object.

    Args:
        status_code: HTTP status code
        error_message: Human-readable error message
        details: Additional error details

    Returns:
        API Gateway error response dictionary
    """
    error_body: Dict[str, Any] = {"error": error_message}

    if details:
        error_body["details"] = details

    return build_response(status_code, error_body)


def build_success_response(
    data: Optional[Dict[str, Any]] = None, message: Optional[str] = None
) -> Dict[str, Any]:
    """
    Build standardized success response.

    Args:
        data: Extra top-level fields merged into the body
        message: Optional success message

    Returns:
        API Gateway success response dictionary
    """
    response_body: Dict[str, Any] = {"success": True}

    if message:
        response_body["message"] = message

    if data:
        response_body.update(data)

    return build_response(200, response_body)
