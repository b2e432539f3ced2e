import logging
from typing import Any

import httpx

from ..errors import BackendError

logger = logging.getLogger(__name__)


class SupabaseUtility:
    """Thin async client for the Supabase PostgREST API.

    Offers the three operations the relay needs: insert, select of at most
    one row by equality filters, and upsert on a conflict column.
    """

    REST_PATH: str = "/rest/v1"

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        """Initialize the Supabase utility.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            api_key: Anon or service-role key
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url: str = url.rstrip("/")
        self.api_key: str = api_key
        self.timeout: float = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.url + self.REST_PATH,
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport
            )
        return self._client

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        payload: Any = None,
        prefer: str | None = None
    ) -> Any:
        """Send a request to PostgREST.

        Args:
            method: HTTP method
            table: Table name
            params: Query-string parameters (filters, select, limit)
            payload: JSON body
            prefer: Value of the PostgREST ``Prefer`` header

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            BackendError: On transport failures, non-2xx responses and
                bodies that are not JSON
        """
        headers = {"Prefer": prefer} if prefer else None
        logger.debug(f"{method} {table} params={params}")
        try:
            response: httpx.Response = await self._get_client().request(
                method,
                f"/{table}",
                params=params,
                json=payload,
                headers=headers
            )
        except httpx.HTTPError as e:
            raise BackendError(f"{type(e).__name__}: {e}") from e

        if response.is_error:
            raise BackendError(self._error_message(response), response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON response: {e}", response.status_code) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the PostgREST error message from a failed response."""
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        match body:
            case {"message": message, **rest}:
                details = rest.get("details") or rest.get("hint")
                return f"{message} ({details})" if details else message
            case _:
                return str(body)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Insert rows into a table."""
        await self._request("POST", table, payload=rows, prefer="return=minimal")

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*"
    ) -> dict[str, Any] | None:
        """Select at most one row matching all equality filters.

        Returns:
            The row, or None when nothing matches
        """
        params = {"select": columns, "limit": "1"}
        params.update({column: f"eq.{value}" for column, value in filters.items()})
        rows = await self._request("GET", table, params=params)
        if not rows:
            return None
        return rows[0]

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> None:
        """Insert a row or update the existing one on ``on_conflict``."""
        await self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            payload=[row],
            prefer="resolution=merge-duplicates,return=minimal"
        )

    async def probe(self, table: str) -> bool:
        """Run a lightweight read to confirm the backend is reachable.

        Returns:
            True if the query succeeded, False otherwise (never raises)
        """
        try:
            await self._request("GET", table, params={"select": "id", "limit": "1"})
        except BackendError as e:
            logger.error(f"Error connecting to Supabase: {e}")
            return False
        logger.info("Successfully connected to Supabase")
        return True

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
