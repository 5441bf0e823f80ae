#!/usr/bin/env python3
"""
Local Webhook Invoke

Signs a Terra webhook payload and runs the real webhook handler locally.
Useful to check signature handling and normalization without deploying.

Usage:
    # Built-in sleep sample, datastore calls are mocked and printed
    python scripts/local_invoke.py --dry-run

    # Your own payload against a real Supabase project
    export SUPABASE_URL="https://<project>.supabase.co"
    export SUPABASE_SERVICE_ROLE_KEY="..."
    python scripts/local_invoke.py --payload payload.json

    # Sign without the "." separator
    python scripts/local_invoke.py --dry-run --no-separator

Environment Variables:
    TERRA_SIGNING_SECRET  - Signing secret (default: local-signing-secret)
    SUPABASE_URL          - Supabase project URL
    LOCAL_DEV             - Set to 'true' to use local secrets provider
"""

import argparse
import json
import os
import sys
import time
from typing import Any, Dict
from unittest.mock import MagicMock, patch

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

# Set environment before imports
os.environ.setdefault("LOCAL_DEV", "true")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "wearable-ingest-local")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("TERRA_SIGNING_SECRET", "local-signing-secret")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_KEY_SECRET", "supabase/service-key")

from handlers import terra_webhook  # noqa: E402
from utils.webhook_verification import compute_signature  # noqa: E402

SAMPLE_PAYLOAD = {
    "type": "sleep",
    "user": {"user_id": "terra-user-local", "provider": "WHOOP", "reference_id": "local-user"},
    "data": [
        {
            "metadata": {"start_time": "2024-03-01T23:10:00+00:00", "end_time": "2024-03-02T06:40:00+00:00"},
            "day": "2024-03-02",
            "duration_seconds": 27000,
            "recovery_score": 87,
            "sleep_durations_data": {
                "asleep": {
                    "duration_asleep_state_deep_sleep_seconds": 5400,
                    "duration_asleep_state_rem_sleep_seconds": 6300,
                }
            },
        }
    ],
}


def create_mock_lambda_context():
    """Create a mock Lambda context object."""

    class MockLambdaContext:
        function_name = "terra-webhook-local"
        function_version = "$LATEST"
        invoked_function_arn = "arn:aws:lambda:us-east-1:123456789:function:terra-webhook-local"
        memory_limit_in_mb = 256
        aws_request_id = "local-invoke-request-id"
        log_group_name = "/aws/lambda/terra-webhook-local"
        log_stream_name = "local-stream"

        @staticmethod
        def get_remaining_time_in_millis():
            return 30000

    return MockLambdaContext()


def create_webhook_event(payload: Dict[str, Any], secret: str, separator: str = ".") -> Dict[str, Any]:
    """
    Create a signed API Gateway event for the webhook handler.

    Args:
        payload: Terra webhook payload
        secret: Signing secret
        separator: Joiner between timestamp and body

    Returns:
        API Gateway event dict
    """
    body = json.dumps(payload)
    timestamp = str(int(time.time()))
    signature = compute_signature(body, timestamp, secret, separator)

    return {
        "httpMethod": "POST",
        "path": "/webhooks/terra",
        "headers": {
            "Content-Type": "application/json",
            "terra-signature": f"t={timestamp},v1={signature}",
        },
        "body": body,
        "isBase64Encoded": False,
    }


def build_dry_run_client() -> MagicMock:
    """Mock datastore client that prints every write."""
    client = MagicMock()
    client.find_active_token.return_value = {"user_id": "local-user", "provider": "WHOOP"}
    client.deactivate_terra_token.return_value = []

    def _print_upsert(table, rows, on_conflict, ignore_duplicates=False):
        print(f"\nUPSERT {table} (on_conflict={on_conflict}, ignore_duplicates={ignore_duplicates})")
        for row in rows:
            print(f"  {json.dumps(row, default=str)}")
        return len(rows)

    client.upsert.side_effect = _print_upsert
    return client


def main():
    parser = argparse.ArgumentParser(description="Sign and invoke the Terra webhook handler locally")
    parser.add_argument("--payload", help="Path to a JSON webhook payload (default: built-in sleep sample)")
    parser.add_argument("--dry-run", action="store_true", help="Mock the datastore and print writes")
    parser.add_argument("--no-separator", action="store_true", help="Sign timestamp+body instead of timestamp.body")
    parser.add_argument("--secret", default=os.environ["TERRA_SIGNING_SECRET"], help="Signing secret")
    args = parser.parse_args()

    payload = SAMPLE_PAYLOAD
    if args.payload:
        with open(args.payload, "r") as f:
            payload = json.load(f)

    event = create_webhook_event(payload, args.secret, "" if args.no_separator else ".")
    context = create_mock_lambda_context()

    if args.dry_run:
        with patch.object(terra_webhook, "SupabaseClient", return_value=build_dry_run_client()):
            response = terra_webhook.lambda_handler(event, context)
    else:
        response = terra_webhook.lambda_handler(event, context)

    print(f"\nStatus: {response['statusCode']}")
    print(f"Body: {response['body']}")
    return 0 if response["statusCode"] < 400 else 1


if __name__ == "__main__":
    sys.exit(main())
