"""
Unit tests for the health check handler
"""

import json
from unittest.mock import patch

from handlers import health_check


def test_healthy_with_configuration(app_env, lambda_context):
    response = health_check.lambda_handler({}, lambda_context)

    assert response["statusCode"] == 200
    body = json.loads(response["body"])
    assert body["status"] == "healthy"
    assert body["environment"] == "test"
    assert body["checks"] == {"environment": "pass", "metric_mappings": "pass"}


def test_degraded_without_signing_secret(app_env, monkeypatch, lambda_context):
    monkeypatch.delenv("TERRA_SIGNING_SECRET")

    response = health_check.lambda_handler({}, lambda_context)

    assert response["statusCode"] == 503
    assert json.loads(response["body"])["checks"]["environment"] == "fail"


def test_deep_check_queries_datastore(app_env, lambda_context):
    event = {"queryStringParameters": {"deep": "true"}}

    with patch.object(health_check, "SupabaseClient") as client_cls:
        response = health_check.lambda_handler(event, lambda_context)

    assert response["statusCode"] == 200
    assert json.loads(response["body"])["checks"]["datastore"] == "pass"
    client_cls.return_value.health_check.assert_called_once()


def test_deep_check_datastore_failure(app_env, lambda_context):
    event = {"queryStringParameters": {"deep": "1"}}

    with patch.object(health_check, "SupabaseClient") as client_cls:
        client_cls.return_value.health_check.side_effect = RuntimeError("down")
        response = health_check.lambda_handler(event, lambda_context)

    assert response["statusCode"] == 503
    body = json.loads(response["body"])
    assert body["status"] == "degraded"
    assert body["checks"]["datastore"] == "fail"
