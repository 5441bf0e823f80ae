"""
Supabase Datastore Client

Adapter for the Supabase PostgREST API used to persist normalized wearable data.
Handles authentication, upserts, request/response processing, and error handling.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from aws_lambda_powertools import Logger
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from adapters.secrets import SecretsError, SecretsProvider, get_secrets_provider
from config.settings import Settings, get_settings
from utils.exceptions import AuthenticationError, DatastoreError

logger = Logger(child=True)

TERRA_TOKENS_TABLE = "terra_tokens"
TERRA_WEBHOOKS_RAW_TABLE = "terra_webhooks_raw"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _eq_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Convert ``{"column": value}`` into PostgREST ``eq.`` query parameters."""
    params = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


class SupabaseClient:
    """
    Client for Supabase (PostgREST) table operations.

    Provides upsert, insert, select and update primitives plus the Terra
    token helpers used by the webhook handler.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        secrets_provider: Optional[SecretsProvider] = None,
    ):
        """Initialize Supabase client with configuration from environment."""
        self.settings = settings or get_settings()
        self.base_url = self.settings.supabase_url.rstrip("/")
        self.rest_url = f"{self.base_url}/rest/v1"
        self.timeout = self.settings.request_timeout

        self.api_key = self._get_api_key(secrets_provider or get_secrets_provider())
        self.session = self._create_session()

    def _get_api_key(self, secrets_provider: SecretsProvider) -> str:
        """
        Retrieve the service-role key through the secrets provider.

        Returns:
            Service-role key string

        Raises:
            AuthenticationError: If unable to retrieve the key
        """
        try:
            return secrets_provider.get_secret(self.settings.supabase_service_key_secret)
        except SecretsError as e:
            logger.error(f"Failed to retrieve Supabase service key: {str(e)}")
            raise AuthenticationError(f"Could not retrieve service key: {str(e)}")

    def _create_session(self) -> requests.Session:
        """
        Create requests session with retry logic and default headers.

        Returns:
            Configured requests.Session
        """
        session = requests.Session()

        # Configure retry strategy
        retry_strategy = Retry(
            total=self.settings.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST", "PATCH", "DELETE"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        # Set default headers
        session.headers.update(
            {
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

        return session

    def _send(self, method: str, table: str, action: str, **kwargs) -> requests.Response:
        """
        Send a request to a table endpoint and translate failures.

        Raises:
            DatastoreError: If the request fails or returns an error status
        """
        url = f"{self.rest_url}/{table}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"HTTP error during {action} on {table}: {str(e)}")
            if e.response is not None:
                logger.error(f"Response body: {e.response.text}")
            raise DatastoreError(f"Failed to {action} {table}: {str(e)}", status_code=status_code)
        except requests.RequestException as e:
            logger.error(f"Request error during {action} on {table}: {str(e)}")
            raise DatastoreError(f"Request failed: {str(e)}")

    def health_check(self) -> bool:
        """
        Perform health check by reading one Terra token row.

        Returns:
            True if the datastore is reachable

        Raises:
            DatastoreError: If health check fails
        """
        self._send("GET", TERRA_TOKENS_TABLE, "read", params={"select": "id", "limit": "1"})
        logger.info("Supabase health check passed")
        return True

    def upsert(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> int:
        """
        Insert rows, resolving conflicts on the given unique columns.

        Args:
            table: Table name
            rows: Rows to write
            on_conflict: Comma-separated conflict columns, e.g. "user_id,external_id"
            ignore_duplicates: Keep existing rows instead of merging into them

        Returns:
            Number of rows sent

        Raises:
            DatastoreError: If API request fails
        """
        if not rows:
            return 0

        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        logger.info(
            f"Upserting {len(rows)} rows into {table}",
            extra={"on_conflict": on_conflict, "resolution": resolution},
        )

        self._send(
            "POST",
            table,
            "upsert",
            params={"on_conflict": on_conflict},
            json=rows,
            headers={"Prefer": f"resolution={resolution},return=minimal"},
        )
        return len(rows)

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> int:
        """Insert rows without conflict handling."""
        if not rows:
            return 0

        self._send("POST", table, "insert", json=rows, headers={"Prefer": "return=minimal"})
        return len(rows)

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows matching equality filters.

        Args:
            table: Table name
            filters: Column/value pairs combined with AND
            columns: PostgREST select list
            limit: Optional row limit

        Returns:
            Matching rows
        """
        params = {"select": columns, **_eq_filters(filters)}
        if limit is not None:
            params["limit"] = str(limit)

        response = self._send("GET", table, "read", params=params)
        return response.json()

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Update rows matching equality filters.

        Returns:
            Updated rows
        """
        if not filters:
            raise ValueError("Refusing to update without filters")

        response = self._send(
            "PATCH",
            table,
            "update",
            params=_eq_filters(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    def find_active_token(self, terra_user_id: str) -> Optional[Dict[str, Any]]:
        """
        Find the active Terra token for a Terra user.

        Args:
            terra_user_id: Terra's user ID

        Returns:
            Row with ``user_id`` and ``provider``, or None
        """
        rows = self.select(
            TERRA_TOKENS_TABLE,
            filters={"terra_user_id": terra_user_id, "is_active": True},
            columns="user_id,provider",
            limit=1,
        )
        return rows[0] if rows else None

    def upsert_terra_token(self, user_id: str, provider: str, terra_user_id: str) -> None:
        """Create or reactivate the token linking an app user to a Terra user."""
        now = _utcnow()
        self.upsert(
            TERRA_TOKENS_TABLE,
            [
                {
                    "user_id": user_id,
                    "provider": provider,
                    "terra_user_id": terra_user_id,
                    "is_active": True,
                    "last_sync_date": now,
                    "updated_at": now,
                }
            ],
            on_conflict="user_id,provider",
        )

    def deactivate_terra_token(self, terra_user_id: str) -> List[Dict[str, Any]]:
        """Mark every token of a Terra user inactive."""
        return self.update(
            TERRA_TOKENS_TABLE,
            {"is_active": False, "updated_at": _utcnow()},
            {"terra_user_id": terra_user_id},
        )

    def touch_last_sync(self, terra_user_id: str) -> List[Dict[str, Any]]:
        """Stamp ``last_sync_date`` on the active token of a Terra user."""
        now = _utcnow()
        return self.update(
            TERRA_TOKENS_TABLE,
            {"last_sync_date": now, "updated_at": now},
            {"terra_user_id": terra_user_id, "is_active": True},
        )

    def store_raw_webhook(self, payload_type: str, payload: Dict[str, Any]) -> None:
        """Keep an audit copy of a verified webhook payload."""
        user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
        self.insert(
            TERRA_WEBHOOKS_RAW_TABLE,
            [
                {
                    "type": payload_type,
                    "user_id": user.get("user_id"),
                    "provider": user.get("provider"),
                    "payload": payload,
                    "status": "received",
                }
            ],
        )
