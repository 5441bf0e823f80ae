"""
Terra Webhook Handler

Receives signed webhook events from Terra, normalizes the wearable data they
carry and upserts it into the datastore.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from aws_lambda_powertools import Logger, Tracer, Metrics
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from adapters.supabase_client import SupabaseClient
from config.settings import get_settings
from normalization.metric_mappings import UNIFIED_METRICS
from normalization.models import MetricMapping
from normalization.terra_transform import DATA_PAYLOAD_TYPES, transform_terra_payload
from utils.exceptions import DatastoreError, IngestionError, ValidationError
from utils.response_builder import build_error_response, build_response, build_success_response
from utils.webhook_verification import extract_signature, verify_webhook_signature

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="WearableIngest")

PAYLOAD_TYPES = ("auth", "activity", "body", "daily", "sleep", "nutrition", "athlete", "healthcheck")
TOKEN_EVENT_TYPES = ("auth", "reauth")
SUPPORTED_TYPES = PAYLOAD_TYPES + ("reauth", "deauth")

UNIFIED_METRICS_TABLE = "unified_metrics"
WORKOUTS_TABLE = "workouts"
BODY_COMPOSITION_TABLE = "body_composition"


@dataclass
class WebhookEnvelope:
    """One inbound Terra notification, as received."""

    raw_body: bytes
    signature_header: str
    payload_type: Optional[str] = None


def read_envelope(event: Dict[str, Any]) -> WebhookEnvelope:
    """
    Build the envelope from an API Gateway proxy event.

    The body is kept as the exact bytes received; re-serializing the parsed
    JSON would break signature verification.

    Raises:
        ValidationError: If a base64-encoded body cannot be decoded
    """
    body = event.get("body") or ""

    if event.get("isBase64Encoded"):
        try:
            raw_body = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Invalid base64 body")
    else:
        raw_body = body.encode("utf-8") if isinstance(body, str) else body

    return WebhookEnvelope(raw_body=raw_body, signature_header=extract_signature(event.get("headers")))


def parse_payload(raw_body: bytes) -> Dict[str, Any]:
    """
    Parse the verified webhook body.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")

    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body", details={"reason": "expected an object"})

    return payload


def _user_of(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return the payload's ``user`` object, or {} when it is missing or not an object."""
    user = payload.get("user")
    return user if isinstance(user, dict) else {}


def _http_method(event: Dict[str, Any]) -> str:
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method")
    return (method or "POST").upper()


@logger.inject_lambda_context(clear_state=True)
@tracer.capture_lambda_handler
@metrics.log_metrics
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda handler for Terra webhook events.

    Args:
        event: API Gateway event containing the signed webhook
        context: Lambda context object

    Returns:
        API Gateway response with status code and body
    """
    method = _http_method(event)

    if method == "OPTIONS":
        return build_response(status_code=204, body=None)

    if method in ("GET", "HEAD"):
        body = None if method == "HEAD" else {
            "ok": True,
            "message": "Terra webhook endpoint is live. Send signed POST webhooks here.",
        }
        return build_response(status_code=200, body=body)

    if method != "POST":
        return build_error_response(405, "Method not allowed")

    try:
        settings = get_settings()
        envelope = read_envelope(event)

        if not verify_webhook_signature(
            envelope.raw_body, envelope.signature_header, settings.terra_signing_secret
        ):
            logger.warning(
                "Rejected Terra webhook",
                extra={"has_signature": bool(envelope.signature_header), "body_length": len(envelope.raw_body)},
            )
            metrics.add_metric(name="WebhookSignatureRejected", unit=MetricUnit.Count, value=1)
            return build_error_response(400, "Invalid signature")

        payload = parse_payload(envelope.raw_body)
        envelope.payload_type = payload.get("type")
        logger.append_keys(webhook_type=envelope.payload_type)

        user = _user_of(payload)
        logger.info(
            "Valid Terra webhook received",
            extra={"terra_user_id": user.get("user_id"), "provider": user.get("provider")},
        )
        metrics.add_metric(name="WebhookReceived", unit=MetricUnit.Count, value=1)

        if envelope.payload_type == "healthcheck":
            logger.info("Healthcheck received")
            return build_success_response()

        if envelope.payload_type not in SUPPORTED_TYPES:
            logger.warning("Unhandled webhook type", extra={"type": envelope.payload_type})
            return build_success_response(
                message=f"Webhook type {envelope.payload_type} received but not processed"
            )

        client = SupabaseClient(settings=settings)
        store_raw_webhook(client, envelope.payload_type, payload)

        if envelope.payload_type in TOKEN_EVENT_TYPES:
            result = process_auth_event(payload, client)
        elif envelope.payload_type in DATA_PAYLOAD_TYPES:
            result = process_data_event(payload, client, UNIFIED_METRICS)
        else:
            result = process_deauth_event(payload, client)

        metrics.add_metric(name="WebhookProcessed", unit=MetricUnit.Count, value=1)
        logger.info("Successfully processed webhook", extra={"result": result})

        return build_success_response(result)

    except ValidationError as e:
        logger.error("Validation error", extra={"error": str(e), "field": e.field})
        metrics.add_metric(name="WebhookValidationError", unit=MetricUnit.Count, value=1)
        return build_error_response(400, str(e))

    except DatastoreError as e:
        logger.error("Datastore error", extra={"error": str(e), "status_code": e.status_code})
        metrics.add_metric(name="WebhookDatastoreError", unit=MetricUnit.Count, value=1)
        return build_error_response(500, "Datastore error occurred")

    except IngestionError as e:
        logger.error("Ingestion error", extra={"error": str(e)})
        metrics.add_metric(name="WebhookIngestionError", unit=MetricUnit.Count, value=1)
        return build_error_response(500, "Ingestion error occurred")

    except Exception:
        logger.exception("Unexpected error processing webhook")
        metrics.add_metric(name="WebhookUnexpectedError", unit=MetricUnit.Count, value=1)
        return build_error_response(500, "Internal server error")


def store_raw_webhook(client: SupabaseClient, payload_type: str, payload: Dict[str, Any]) -> None:
    """Store the audit copy; a failure here must not fail the webhook."""
    try:
        client.store_raw_webhook(payload_type, payload)
    except DatastoreError as e:
        logger.warning("Failed to store raw webhook", extra={"error": str(e)})


@tracer.capture_method
def process_auth_event(payload: Dict[str, Any], client: SupabaseClient) -> Dict[str, Any]:
    """
    Link an application user to a Terra user after a device connection.

    Terra echoes our user ID back as ``reference_id``.

    Raises:
        ValidationError: If the reference ID, Terra user ID or provider is missing
    """
    user = _user_of(payload)
    reference_id = user.get("reference_id") or payload.get("reference_id")
    terra_user_id = user.get("user_id")
    provider = str(user.get("provider") or "").strip().upper()

    if not reference_id or not terra_user_id or not provider:
        raise ValidationError(
            "Missing required fields in auth webhook",
            field="reference_id" if not reference_id else "user",
        )

    client.upsert_terra_token(user_id=reference_id, provider=provider, terra_user_id=terra_user_id)

    logger.info(
        f"User {reference_id} connected {provider} via Terra",
        extra={"terra_user_id": terra_user_id},
    )
    return {"type": payload.get("type"), "message": f"{payload.get('type')} processed successfully"}


@tracer.capture_method
def process_deauth_event(payload: Dict[str, Any], client: SupabaseClient) -> Dict[str, Any]:
    """Deactivate the tokens of a Terra user who disconnected a device."""
    terra_user_id = _user_of(payload).get("user_id")
    if not terra_user_id:
        raise ValidationError("Missing user.user_id in deauth webhook", field="user.user_id")

    updated = client.deactivate_terra_token(terra_user_id)
    logger.info("Deactivated Terra tokens", extra={"terra_user_id": terra_user_id, "count": len(updated)})
    return {"type": "deauth", "deactivated": len(updated)}


@tracer.capture_method
def process_data_event(
    payload: Dict[str, Any],
    client: SupabaseClient,
    mappings: Mapping[str, MetricMapping],
) -> Dict[str, Any]:
    """
    Normalize and persist the data items of a Terra data webhook.

    Args:
        payload: Parsed webhook payload
        client: Datastore client
        mappings: Metric table

    Returns:
        Summary of processed rows

    Raises:
        ValidationError: If the webhook has no Terra user ID
        DatastoreError: If a write fails
    """
    payload_type = payload.get("type")
    user = _user_of(payload)
    terra_user_id = user.get("user_id")

    if not terra_user_id:
        raise ValidationError("Missing user.user_id in data webhook", field="user.user_id")

    token = client.find_active_token(terra_user_id)
    if not token:
        # Acknowledge anyway; Terra retries non-2xx responses indefinitely.
        logger.warning("User not found for Terra user_id", extra={"terra_user_id": terra_user_id})
        metrics.add_metric(name="WebhookUnknownUser", unit=MetricUnit.Count, value=1)
        return {"type": payload_type, "processed": 0, "message": "User not found"}

    provider = token.get("provider") or user.get("provider") or "unknown"
    rows = transform_terra_payload(payload_type, payload.get("data"), token["user_id"], provider, mappings)

    client.upsert(UNIFIED_METRICS_TABLE, rows.metrics, on_conflict="user_id,measurement_date,metric_name")
    client.upsert(WORKOUTS_TABLE, rows.workouts, on_conflict="user_id,external_id", ignore_duplicates=True)
    client.upsert(BODY_COMPOSITION_TABLE, rows.body_composition, on_conflict="user_id,measurement_date")
    client.touch_last_sync(terra_user_id)

    if rows.metrics:
        metrics.add_metric(name="MetricsUpserted", unit=MetricUnit.Count, value=len(rows.metrics))
    if rows.skipped_items:
        metrics.add_metric(name="DataItemsSkipped", unit=MetricUnit.Count, value=rows.skipped_items)

    logger.info(
        f"Processed Terra {payload_type} data from {provider}",
        extra={
            "user_id": token["user_id"],
            "metrics": len(rows.metrics),
            "workouts": len(rows.workouts),
            "body_composition": len(rows.body_composition),
            "skipped": rows.skipped_items,
        },
    )

    return {"type": payload_type, "processed": rows.total, "skipped": rows.skipped_items}
