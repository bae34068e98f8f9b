"""Partner network submission channel over mutual TLS.

Posts EPCIS XML documents to the partner endpoint with a client
certificate and returns the partner-assigned transaction id.

Example:
    async with PartnerClient(
        endpoint="https://partner.example.com/epcis",
        cert_file="client.crt", key_file="client.key", ca_file="ca.pem",
    ) as client:
        receipt = await client.submit(xml_bytes)
"""

import logging
import ssl
import time
from datetime import UTC, datetime

import httpx
from dateutil.parser import ParserError, parse

from src.dispatch.models import SubmissionReceipt
from src.services.errors import PartnerConnectionError, PartnerServiceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def parse_partner_timestamp(value: str | None) -> datetime | None:
    """Parse a partner timestamp that may lack a timezone.

    Naive timestamps are taken as UTC. Unparseable values yield None.
    """
    if not value:
        return None
    try:
        parsed = parse(value)
    except (ParserError, OverflowError, TypeError):
        logger.warning("Unparseable partner timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def build_ssl_context(
    cert_file: str | None,
    key_file: str | None,
    ca_file: str | None,
) -> ssl.SSLContext:
    """TLS context presenting the client certificate and trusting ``ca_file``."""
    context = ssl.create_default_context(cafile=ca_file)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if cert_file:
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return context


class PartnerClient:
    """mTLS submission channel implementing SubmissionChannel.

    Attributes:
        _endpoint: Submission URL
        _client: httpx.AsyncClient carrying the TLS context
    """

    def __init__(
        self,
        endpoint: str,
        cert_file: str | None = None,
        key_file: str | None = None,
        ca_file: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            endpoint: Partner submission URL.
            cert_file: PEM client certificate.
            key_file: PEM private key for ``cert_file``.
            ca_file: CA bundle used to verify the partner.
            timeout: Per-request timeout in seconds.
            http_client: Pre-built client (tests inject one with a
                fake transport). When given, the TLS arguments are ignored.
        """
        if not endpoint:
            raise ValueError("Partner endpoint is required")
        self._endpoint = endpoint
        if http_client is None:
            logger.info(
                "Initializing partner mTLS client endpoint=%s cert_file=%s",
                endpoint,
                cert_file,
            )
            http_client = httpx.AsyncClient(
                verify=build_ssl_context(cert_file, key_file, ca_file),
                timeout=timeout,
            )
        self._client = http_client

    async def __aenter__(self) -> "PartnerClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, payload: bytes) -> SubmissionReceipt:
        """POST an EPCIS XML document.

        Raises:
            PartnerServiceError: HTTP status >= 400, or a 2xx body without
                a transaction id.
            PartnerConnectionError: Connection could not be established.
            TimeoutError: No response within the timeout.
        """
        logger.info(
            "Submitting EPCIS document endpoint=%s size=%d", self._endpoint, len(payload)
        )
        started = time.monotonic()
        try:
            response = await self._client.post(
                self._endpoint,
                content=payload,
                headers={"Content-Type": "application/xml"},
            )
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Partner submission timed out: {e}") from e
        except httpx.TransportError as e:
            raise PartnerConnectionError(self._endpoint, str(e) or type(e).__name__) from e

        duration_ms = int((time.monotonic() - started) * 1000)

        if response.status_code >= 400:
            logger.error(
                "Partner submission failed status=%d duration_ms=%d",
                response.status_code,
                duration_ms,
            )
            raise PartnerServiceError(
                status_code=response.status_code,
                message=response.text[:1000] or response.reason_phrase,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise PartnerServiceError(
                status_code=502,
                message=f"Malformed partner response: {e}",
            ) from e

        transaction_id = body.get("id") if isinstance(body, dict) else None
        if not transaction_id:
            raise PartnerServiceError(
                status_code=502,
                message="Partner response carried no transaction id",
                details={"body": body},
            )

        receipt = SubmissionReceipt(
            transaction_id=str(transaction_id),
            accepted_at=parse_partner_timestamp(body.get("created_at")),
        )
        logger.info(
            "Partner accepted document transaction_id=%s status=%d duration_ms=%d",
            receipt.transaction_id,
            response.status_code,
            duration_ms,
        )
        return receipt
