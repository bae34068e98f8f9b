"""Partner dashboard client for delivery status lookups.

Authenticates with username/password for a short-lived bearer token,
then searches the dashboard's document log for a transaction id.
Implements the StatusChannel protocol.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from src.dispatch.models import PartnerStatusReport
from src.services.errors import (
    PartnerConnectionError,
    PartnerServiceError,
    StatusNotFoundError,
)
from src.services.token_cache import TokenCache

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CLIENT_ID = "37018"
DEFAULT_COMPANY_ID = "37018"

# Log search window and pagination ceiling
SEARCH_WINDOW = timedelta(days=90)
MAX_SEARCH_PAGES = 100

_DASHBOARD_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class FileRecord:
    """One entry of the dashboard document log."""

    log_guid: str
    status_code: int
    status_message: str
    is_sender: bool = False
    source_file: str = ""
    date_created: str | None = None
    date_modified: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "FileRecord":
        return cls(
            log_guid=str(data.get("logGuid") or ""),
            status_code=int(data.get("statusCode") or 0),
            status_message=str(data.get("statusMsg") or ""),
            is_sender=bool(data.get("is_sender", False)),
            source_file=str(data.get("sourceFile") or ""),
            date_created=data.get("date_created"),
            date_modified=data.get("date_modified"),
        )

    def matches(self, transaction_id: str) -> bool:
        """Log entries reference the transaction by guid or source file prefix."""
        return self.log_guid == transaction_id or self.source_file.startswith(
            f"{transaction_id}/"
        )


class PartnerStatusClient:
    """Dashboard status channel.

    Example:
        client = PartnerStatusClient(
            dashboard_url="https://dashboard.example.com/api",
            username="relay", password="...",
        )
        report = await client.query_status("2f6d...")
    """

    def __init__(
        self,
        dashboard_url: str,
        username: str,
        password: str,
        client_id: str = DEFAULT_CLIENT_ID,
        company_id: str = DEFAULT_COMPANY_ID,
        token_cache: TokenCache | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not dashboard_url:
            raise ValueError("Dashboard URL is required")
        self._base_url = dashboard_url.rstrip("/")
        self._username = username
        self._password = password
        self._client_id = client_id or DEFAULT_CLIENT_ID
        self._company_id = company_id or DEFAULT_COMPANY_ID
        self._tokens = token_cache or TokenCache()
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        logger.info(
            "Initializing partner dashboard client url=%s client_id=%s company_id=%s",
            self._base_url,
            self._client_id,
            self._company_id,
        )

    async def __aenter__(self) -> "PartnerStatusClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Dashboard request timed out: {e}") from e
        except httpx.TransportError as e:
            raise PartnerConnectionError(url, str(e) or type(e).__name__) from e
        if response.status_code >= 400:
            raise PartnerServiceError(
                status_code=response.status_code,
                message=response.text[:1000] or response.reason_phrase,
            )
        return response

    async def _get_token(self) -> str:
        token = self._tokens.get()
        if token is not None:
            return token

        logger.info("Requesting dashboard access token")
        response = await self._request(
            "POST",
            f"{self._base_url}/token",
            json={
                "username": self._username,
                "password": self._password,
                "client_id": self._client_id,
                "scope": "openid",
            },
        )
        body = response.json()
        token = body.get("access_token")
        if not token:
            raise PartnerServiceError(
                status_code=502, message="Token response carried no access_token"
            )
        expires_at = self._tokens.set(token, int(body.get("expires_in") or 0))
        logger.info("Obtained dashboard access token expires_at=%s", expires_at.isoformat())
        return token

    async def search_files(
        self, start: datetime, end: datetime, page: int = 1
    ) -> tuple[list[FileRecord], bool]:
        """Fetch one page of the document log.

        Returns:
            Tuple of (records, has_next_page).
        """
        token = await self._get_token()
        url = f"{self._base_url}/de-status/company/{self._company_id}/log/"
        try:
            response = await self._request(
                "GET",
                url,
                params={
                    "start": start.strftime(_DASHBOARD_TIME_FORMAT),
                    "end": end.strftime(_DASHBOARD_TIME_FORMAT),
                    "page": page,
                },
                headers={"Authorization": f"Bearer {token}"},
            )
        except PartnerServiceError as e:
            if e.status_code == 401:
                self._tokens.clear()
            raise

        body = response.json()
        records = [FileRecord.from_api(item) for item in body.get("results") or []]
        logger.debug(
            "Dashboard log page=%d count=%s results=%d",
            page,
            body.get("count"),
            len(records),
        )
        return records, body.get("next") is not None

    async def find_file(self, transaction_id: str) -> FileRecord:
        """Search the last 90 days of the log for ``transaction_id``.

        Raises:
            StatusNotFoundError: No matching entry within the page ceiling.
        """
        end = datetime.now(UTC)
        start = end - SEARCH_WINDOW
        page = 1
        while page <= MAX_SEARCH_PAGES:
            records, has_next = await self.search_files(start, end, page)
            for record in records:
                if record.matches(transaction_id):
                    return record
            if not has_next:
                break
            page += 1
        else:
            logger.warning(
                "Reached dashboard pagination limit pages=%d transaction_id=%s",
                MAX_SEARCH_PAGES,
                transaction_id,
            )
        raise StatusNotFoundError(transaction_id)

    async def query_status(self, transaction_id: str) -> PartnerStatusReport:
        record = await self.find_file(transaction_id)
        logger.info(
            "Partner status transaction_id=%s status_code=%d status=%s",
            transaction_id,
            record.status_code,
            record.status_message,
        )
        return PartnerStatusReport(
            status_code=record.status_code,
            status_message=record.status_message,
        )
