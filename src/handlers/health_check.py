"""
Health Check Handler

Provides health status for monitoring and load balancing.
Verifies configuration and, on request, datastore connectivity.
"""

import os
from typing import Any, Dict

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from adapters.supabase_client import SupabaseClient
from normalization.metric_mappings import UNIFIED_METRICS
from utils.response_builder import build_response

logger = Logger()
tracer = Tracer()

REQUIRED_ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY_SECRET",
    "TERRA_SIGNING_SECRET",
)


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def lambda_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda handler for health check endpoint.

    Pass ``?deep=true`` to also check datastore connectivity.

    Args:
        event: API Gateway event
        context: Lambda context object

    Returns:
        API Gateway response with health status
    """
    try:
        logger.info("Processing health check request")

        health_status = {
            "status": "healthy",
            "service": "wearable-ingest",
            "environment": os.environ.get("ENVIRONMENT", "unknown"),
            "version": "1.0.0",
            "checks": {},
        }

        env_check = all(os.environ.get(var) for var in REQUIRED_ENV_VARS)
        health_status["checks"]["environment"] = "pass" if env_check else "fail"
        health_status["checks"]["metric_mappings"] = "pass" if len(UNIFIED_METRICS) > 0 else "fail"

        params = event.get("queryStringParameters") or {}
        if str(params.get("deep", "")).lower() in ("true", "1", "yes"):
            health_status["checks"]["datastore"] = check_datastore_health() if env_check else "fail"

        all_checks_pass = all(status == "pass" for status in health_status["checks"].values())

        if not all_checks_pass:
            health_status["status"] = "degraded"
            logger.warning("Health check degraded", extra={"checks": health_status["checks"]})
            return build_response(status_code=503, body=health_status)

        logger.info("Health check passed")
        return build_response(status_code=200, body=health_status)

    except Exception as e:
        logger.exception("Health check failed")
        return build_response(status_code=503, body={"status": "unhealthy", "error": str(e)})


@tracer.capture_method
def check_datastore_health() -> str:
    """
    Check connectivity to the Supabase datastore.

    Returns:
        Health status: 'pass' or 'fail'
    """
    try:
        client = SupabaseClient()
        client.health_check()
        return "pass"
    except Exception as e:
        logger.error(f"Datastore health check failed: {str(e)}")
        return "fail"
