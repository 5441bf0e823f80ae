"""
Unit tests for the Terra webhook handler
"""

import base64
import json
from unittest.mock import Mock, patch

import pytest

from handlers import terra_webhook
from utils.exceptions import DatastoreError


@pytest.fixture
def mock_client():
    """Mock datastore client with one linked Terra user."""
    client = Mock()
    client.find_active_token.return_value = {"user_id": "app-user-1", "provider": "WHOOP"}
    client.deactivate_terra_token.return_value = [{"id": 1}]
    client.upsert.side_effect = lambda table, rows, on_conflict, ignore_duplicates=False: len(rows)
    return client


@pytest.fixture
def patched_client(app_env, mock_client):
    with patch.object(terra_webhook, "SupabaseClient", return_value=mock_client) as client_cls:
        yield client_cls


def _body(response):
    return json.loads(response["body"])


def _upserts(mock_client):
    return {c[0][0]: c for c in mock_client.upsert.call_args_list}


def test_invalid_signature_returns_400(patched_client, mock_client, webhook_event, lambda_context):
    event = webhook_event({"type": "sleep"}, headers={"terra-signature": "t=1700000000,v1=deadbeef"})

    response = terra_webhook.lambda_handler(event, lambda_context)

    assert response["statusCode"] == 400
    assert _body(response) == {"error": "Invalid signature"}
    patched_client.assert_not_called()


def test_missing_signature_returns_400(patched_client, webhook_event, lambda_context):
    response = terra_webhook.lambda_handler(webhook_event({"type": "healthcheck"}), lambda_context)

    assert response["statusCode"] == 400
    assert _body(response) == {"error": "Invalid signature"}


def test_unconfigured_secret_fails_closed(patched_client, monkeypatch, signed_event, lambda_context):
    monkeypatch.setenv("TERRA_SIGNING_SECRET", "")

    response = terra_webhook.lambda_handler(signed_event({"type": "healthcheck"}), lambda_context)

    assert response["statusCode"] == 400


def test_signature_over_other_body_is_rejected(patched_client, signed_event, lambda_context):
    event = signed_event({"type": "healthcheck"})
    event["body"] = event["body"].replace("healthcheck", "healthcheckX")

    response = terra_webhook.lambda_handler(event, lambda_context)

    assert response["statusCode"] == 400


def test_healthcheck_returns_success_without_datastore(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event({"type": "healthcheck"}), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response) == {"success": True}
    patched_client.assert_not_called()


def test_concatenated_signature_format_accepted(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event({"type": "healthcheck"}, separator=""), lambda_context)

    assert response["statusCode"] == 200


def test_base64_body_is_verified_on_decoded_bytes(patched_client, signed_event, lambda_context):
    event = signed_event({"type": "healthcheck"})
    event["body"] = base64.b64encode(event["body"].encode("utf-8")).decode("ascii")
    event["isBase64Encoded"] = True

    response = terra_webhook.lambda_handler(event, lambda_context)

    assert response["statusCode"] == 200


def test_malformed_json_returns_400(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event("{not json"), lambda_context)

    assert response["statusCode"] == 400
    assert _body(response) == {"error": "Invalid JSON body"}


def test_non_object_json_returns_400(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event([1, 2, 3]), lambda_context)

    assert response["statusCode"] == 400


def test_unknown_type_is_acknowledged(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event({"type": "menstruation"}), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response) == {
        "success": True,
        "message": "Webhook type menstruation received but not processed",
    }
    patched_client.assert_not_called()


def test_sleep_webhook_upserts_unified_metrics(
    patched_client, mock_client, signed_event, sleep_payload, lambda_context
):
    response = terra_webhook.lambda_handler(signed_event(sleep_payload), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response) == {"success": True, "type": "sleep", "processed": 2, "skipped": 0}

    mock_client.find_active_token.assert_called_once_with("terra-user-1")
    mock_client.store_raw_webhook.assert_called_once()
    mock_client.touch_last_sync.assert_called_once_with("terra-user-1")

    call = _upserts(mock_client)["unified_metrics"]
    assert call[1]["on_conflict"] == "user_id,measurement_date,metric_name"
    values = {row["metric_name"]: row["value"] for row in call[0][1]}
    assert values == {"Recovery Score": 87, "Sleep Duration": 7.5}


def test_activity_webhook_upserts_workouts(patched_client, mock_client, signed_event, lambda_context):
    payload = {
        "type": "activity",
        "user": {"user_id": "terra-user-1", "provider": "WHOOP"},
        "data": [
            {
                "metadata": {
                    "name": "Running",
                    "start_time": "2024-03-02T07:00:00+00:00",
                    "end_time": "2024-03-02T07:30:00+00:00",
                },
                "strain": 12.4,
            }
        ],
    }

    response = terra_webhook.lambda_handler(signed_event(payload), lambda_context)

    assert response["statusCode"] == 200
    call = _upserts(mock_client)["workouts"]
    assert call[1]["on_conflict"] == "user_id,external_id"
    assert call[1]["ignore_duplicates"] is True
    assert call[0][1][0]["external_id"] == "terra_WHOOP_2024-03-02T07:00:00+00:00"
    assert _upserts(mock_client)["unified_metrics"][0][1] == []


def test_data_webhook_for_unknown_user_is_acknowledged(
    patched_client, mock_client, signed_event, sleep_payload, lambda_context
):
    mock_client.find_active_token.return_value = None

    response = terra_webhook.lambda_handler(signed_event(sleep_payload), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response)["processed"] == 0
    mock_client.upsert.assert_not_called()


def test_data_webhook_without_user_returns_400(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event({"type": "daily", "data": []}), lambda_context)

    assert response["statusCode"] == 400


def test_datastore_failure_returns_500(patched_client, mock_client, signed_event, sleep_payload, lambda_context):
    mock_client.upsert.side_effect = DatastoreError("boom", status_code=503)

    response = terra_webhook.lambda_handler(signed_event(sleep_payload), lambda_context)

    assert response["statusCode"] == 500
    assert _body(response) == {"error": "Datastore error occurred"}


def test_raw_webhook_store_failure_is_not_fatal(
    patched_client, mock_client, signed_event, sleep_payload, lambda_context
):
    mock_client.store_raw_webhook.side_effect = DatastoreError("raw table missing")

    response = terra_webhook.lambda_handler(signed_event(sleep_payload), lambda_context)

    assert response["statusCode"] == 200


def test_auth_webhook_links_terra_user(patched_client, mock_client, signed_event, lambda_context):
    payload = {
        "type": "auth",
        "reference_id": "app-user-1",
        "user": {"user_id": "terra-user-1", "provider": "oura"},
    }

    response = terra_webhook.lambda_handler(signed_event(payload), lambda_context)

    assert response["statusCode"] == 200
    mock_client.upsert_terra_token.assert_called_once_with(
        user_id="app-user-1", provider="OURA", terra_user_id="terra-user-1"
    )


def test_auth_webhook_missing_fields_returns_400(patched_client, mock_client, signed_event, lambda_context):
    payload = {"type": "auth", "user": {"user_id": "terra-user-1", "provider": "OURA"}}

    response = terra_webhook.lambda_handler(signed_event(payload), lambda_context)

    assert response["statusCode"] == 400
    mock_client.upsert_terra_token.assert_not_called()


def test_deauth_webhook_deactivates_tokens(patched_client, mock_client, signed_event, lambda_context):
    payload = {"type": "deauth", "user": {"user_id": "terra-user-1", "provider": "OURA"}}

    response = terra_webhook.lambda_handler(signed_event(payload), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response)["deactivated"] == 1
    mock_client.deactivate_terra_token.assert_called_once_with("terra-user-1")


def test_get_reports_endpoint_is_live(webhook_event, lambda_context):
    response = terra_webhook.lambda_handler(webhook_event("", method="GET"), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response)["ok"] is True


def test_options_preflight(webhook_event, lambda_context):
    response = terra_webhook.lambda_handler(webhook_event("", method="OPTIONS"), lambda_context)

    assert response["statusCode"] == 204
    assert response["headers"]["Access-Control-Allow-Origin"] == "*"


def test_other_methods_rejected(webhook_event, lambda_context):
    response = terra_webhook.lambda_handler(webhook_event("", method="DELETE"), lambda_context)

    assert response["statusCode"] == 405


def test_healthcheck_with_non_object_user(patched_client, signed_event, lambda_context):
    response = terra_webhook.lambda_handler(signed_event({"type": "healthcheck", "user": "abc"}), lambda_context)

    assert response["statusCode"] == 200
    assert _body(response) == {"success": True}


@pytest.mark.parametrize("payload_type", ["sleep", "auth", "deauth"])
def test_non_object_user_returns_400(patched_client, mock_client, signed_event, lambda_context, payload_type):
    payload = {"type": payload_type, "reference_id": "app-user-1", "user": "abc", "data": []}

    response = terra_webhook.lambda_handler(signed_event(payload), lambda_context)

    assert response["statusCode"] == 400
    mock_client.upsert.assert_not_called()
    mock_client.upsert_terra_token.assert_not_called()
    mock_client.deactivate_terra_token.assert_not_called()
