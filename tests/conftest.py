"""
Shared pytest fixtures
"""

import json
import os
from dataclasses import dataclass

import pytest

# Powertools reads these at import time
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "wearable-ingest-test")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "WearableIngest")

TEST_SECRET = "test-signing-secret"
TEST_TIMESTAMP = "1700000000"


@dataclass
class FakeLambdaContext:
    function_name: str = "terra-webhook-test"
    function_version: str = "$LATEST"
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:terra-webhook-test"
    memory_limit_in_mb: int = 256
    aws_request_id: str = "test-request-id"
    log_group_name: str = "/aws/lambda/terra-webhook-test"
    log_stream_name: str = "test-stream"

    def get_remaining_time_in_millis(self) -> int:
        return 30000


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()


@pytest.fixture
def app_env(monkeypatch):
    """Environment for handlers and the datastore client."""
    monkeypatch.setenv("TERRA_SIGNING_SECRET", TEST_SECRET)
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY_SECRET", "supabase/service-key")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
    monkeypatch.setenv("LOCAL_DEV", "true")
    monkeypatch.setenv("ENVIRONMENT", "test")


@pytest.fixture
def sleep_payload():
    return {
        "type": "sleep",
        "user": {"user_id": "terra-user-1", "provider": "WHOOP", "reference_id": "app-user-1"},
        "data": [
            {
                "metadata": {"start_time": "2024-03-01T23:10:00+00:00", "end_time": "2024-03-02T06:40:00+00:00"},
                "day": "2024-03-02",
                "duration_seconds": 27000,
                "recovery_score": 87,
            }
        ],
    }


def make_event(body, headers=None, method="POST", is_base64=False):
    """API Gateway proxy event for a raw body."""
    if not isinstance(body, str):
        body = json.dumps(body)
    return {
        "httpMethod": method,
        "path": "/webhooks/terra",
        "headers": headers or {},
        "body": body,
        "isBase64Encoded": is_base64,
    }


@pytest.fixture
def webhook_event():
    """Factory for API Gateway events."""
    return make_event


@pytest.fixture
def signed_event():
    """Factory for events signed the way Terra signs them."""
    from utils.webhook_verification import compute_signature

    def _signed_event(payload, secret=TEST_SECRET, separator="."):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        signature = compute_signature(body, TEST_TIMESTAMP, secret, separator)
        return make_event(body, headers={"terra-signature": f"t={TEST_TIMESTAMP},v1={signature}"})

    return _signed_event
