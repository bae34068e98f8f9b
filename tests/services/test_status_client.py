"""Tests for PartnerStatusClient with mocked dashboard responses."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from src.services.errors import PartnerServiceError, StatusNotFoundError
from src.services.status_client import MAX_SEARCH_PAGES, FileRecord, PartnerStatusClient
from src.services.token_cache import TokenCache

DASHBOARD = "https://dashboard.example.com/api"


def _log_entry(guid: str, code: int = 200, msg: str = "Acknowledged", source: str = "") -> dict:
    return {
        "logGuid": guid,
        "statusCode": code,
        "statusMsg": msg,
        "is_sender": True,
        "sourceFile": source,
        "date_created": "2026-03-01T12:00:00Z",
    }


class DashboardTransport(httpx.AsyncBaseTransport):
    """Fake dashboard: token endpoint plus paginated log pages."""

    def __init__(self, pages: list[list[dict]], log_status: int = 200):
        self._pages = pages
        self._log_status = log_status
        self.requests: list[httpx.Request] = []
        self.token_requests = 0

    async def handle_async_request(self, request):
        self.requests.append(request)
        if request.url.path.endswith("/token"):
            self.token_requests += 1
            return httpx.Response(
                200, json={"access_token": f"tok-{self.token_requests}", "expires_in": 600},
                request=request,
            )
        if self._log_status != 200:
            return httpx.Response(self._log_status, text="denied", request=request)
        page = int(request.url.params.get("page", "1"))
        results = self._pages[page - 1] if page <= len(self._pages) else []
        has_next = page < len(self._pages)
        return httpx.Response(
            200,
            json={
                "count": sum(len(p) for p in self._pages),
                "next": f"{DASHBOARD}/next" if has_next else None,
                "results": results,
            },
            request=request,
        )


def _make_client(
    transport: httpx.AsyncBaseTransport, token_cache: TokenCache | None = None
) -> PartnerStatusClient:
    return PartnerStatusClient(
        dashboard_url=DASHBOARD,
        username="relay",
        password="secret",
        token_cache=token_cache,
        http_client=httpx.AsyncClient(transport=transport),
    )


class TestFileRecord:
    """Log entry parsing and matching."""

    def test_from_api(self):
        record = FileRecord.from_api(_log_entry("tx-1", 200, "Processing"))
        assert record.log_guid == "tx-1"
        assert record.status_code == 200
        assert record.status_message == "Processing"
        assert record.is_sender is True

    def test_matches_guid(self):
        assert FileRecord.from_api(_log_entry("tx-1")).matches("tx-1")

    def test_matches_source_file_prefix(self):
        record = FileRecord.from_api(_log_entry("other", source="tx-1/epcis.xml"))
        assert record.matches("tx-1")
        assert not record.matches("tx")


class TestQueryStatus:
    """Tests for PartnerStatusClient.query_status."""

    @pytest.mark.asyncio
    async def test_finds_entry_on_first_page(self):
        transport = DashboardTransport([[_log_entry("tx-1", 200, "Acknowledged")]])
        async with _make_client(transport) as client:
            report = await client.query_status("tx-1")

        assert report.status_code == 200
        assert report.status_message == "Acknowledged"

        token_request = transport.requests[0]
        assert token_request.method == "POST"
        assert b'"scope":"openid"' in token_request.content.replace(b" ", b"")
        log_request = transport.requests[1]
        assert log_request.url.path == "/api/de-status/company/37018/log/"
        assert log_request.headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_follows_pagination(self):
        transport = DashboardTransport(
            [[_log_entry("a")], [_log_entry("b")], [_log_entry("tx-9", 422, "Rejected")]]
        )
        async with _make_client(transport) as client:
            report = await client.query_status("tx-9")

        assert report.status_code == 422
        pages = [r.url.params["page"] for r in transport.requests if "log" in r.url.path]
        assert pages == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_not_found_raises(self):
        transport = DashboardTransport([[_log_entry("a")]])
        async with _make_client(transport) as client:
            with pytest.raises(StatusNotFoundError):
                await client.query_status("tx-missing")

    @pytest.mark.asyncio
    async def test_page_ceiling(self):
        """The search stops at the page ceiling even when more pages exist."""
        transport = DashboardTransport([[_log_entry("x")]] * (MAX_SEARCH_PAGES + 5))
        async with _make_client(transport) as client:
            with pytest.raises(StatusNotFoundError):
                await client.query_status("tx-missing")

        log_requests = [r for r in transport.requests if "log" in r.url.path]
        assert len(log_requests) == MAX_SEARCH_PAGES

    @pytest.mark.asyncio
    async def test_search_window_is_ninety_days(self):
        transport = DashboardTransport([[_log_entry("tx-1")]])
        async with _make_client(transport) as client:
            await client.query_status("tx-1")

        params = transport.requests[1].url.params
        start = datetime.strptime(params["start"], "%Y-%m-%dT%H:%M:%SZ")
        end = datetime.strptime(params["end"], "%Y-%m-%dT%H:%M:%SZ")
        assert end - start == timedelta(days=90)


class TestTokenHandling:
    """Bearer token caching."""

    @pytest.mark.asyncio
    async def test_token_reused_across_queries(self):
        transport = DashboardTransport([[_log_entry("tx-1"), _log_entry("tx-2")]])
        async with _make_client(transport) as client:
            await client.query_status("tx-1")
            await client.query_status("tx-2")

        assert transport.token_requests == 1

    @pytest.mark.asyncio
    async def test_unauthorized_clears_token(self):
        cache = TokenCache()
        cache.set("stale", expires_in=600)
        transport = DashboardTransport([], log_status=401)

        async with _make_client(transport, cache) as client:
            with pytest.raises(PartnerServiceError) as exc_info:
                await client.query_status("tx-1")

        assert exc_info.value.status_code == 401
        assert cache.get() is None
        assert transport.token_requests == 0

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(self):
        now = [datetime(2026, 3, 1, tzinfo=UTC)]
        cache = TokenCache(clock=lambda: now[0])
        transport = DashboardTransport([[_log_entry("tx-1")]])

        async with _make_client(transport, cache) as client:
            await client.query_status("tx-1")
            now[0] += timedelta(seconds=600)
            await client.query_status("tx-1")

        assert transport.token_requests == 2
