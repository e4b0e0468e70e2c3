"""
NCBI Taxonomy client for resolving taxon ids to lineages.

Queries the Entrez E-utilities ``efetch`` endpoint of the taxonomy
database and extracts the kingdom-to-species path from the ``LineageEx``
block of the returned XML.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import xml.etree.ElementTree as ET
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Self

import httpx

from margintax.core.constants import (
    NCBI_EUTILS_BASE,
    NCBI_RATE_LIMIT,
    NCBI_RATE_LIMIT_WITH_KEY,
    RANKS,
)
from margintax.core.exceptions import TaxonomyLookupError
from margintax.models.taxonomy import TaxonomicPath

logger = logging.getLogger(__name__)

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_RETRY_BACKOFF = 2.0  # exponential multiplier


def parse_retry_after(value: str | None) -> float | None:
    """
    Seconds to wait from a Retry-After header.

    The header is either a number of seconds or an HTTP date. Returns None
    when it is missing or unreadable, leaving the backoff delay in place.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unreadable Retry-After header: %r", value)
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max((retry_at - datetime.now(UTC)).total_seconds(), 0.0)


def parse_taxonomy_xml(xml_text: str) -> TaxonomicPath | None:
    """
    Extract a taxonomic path from an efetch taxonomy XML document.

    Args:
        xml_text: Body of an efetch response for a single taxid

    Returns:
        TaxonomicPath, or None when the document holds no taxon or none of
        the seven ranks
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        logger.debug("Unparseable taxonomy XML: %.200s", xml_text)
        return None

    taxon = root.find("Taxon")
    if taxon is None:
        return None

    ranks: dict[str, str] = {}
    for node in taxon.iterfind("LineageEx/Taxon"):
        rank = node.findtext("Rank", default="")
        if rank in RANKS:
            ranks[rank] = node.findtext("ScientificName", default="")

    own_rank = taxon.findtext("Rank", default="")
    if own_rank in RANKS:
        ranks[own_rank] = taxon.findtext("ScientificName", default="")

    if not ranks:
        return None
    return TaxonomicPath.from_ranks(ranks)


class NCBITaxonomyClient:
    """Client for NCBI Taxonomy lookups through E-utilities.

    Implements the ``TaxonomySource`` interface. Requests are throttled to
    the E-utilities rate limit, which makes the client safe to share
    between resolver worker threads.

    Attributes:
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        email: str | None = None,
        api_key: str | None = None,
    ):
        """Initialize NCBI client.

        Args:
            timeout: Request timeout in seconds.
            max_retries: Maximum retry attempts for transient failures.
            retry_delay: Initial delay between retries in seconds.
            retry_backoff: Exponential backoff multiplier for retries.
            email: Contact address sent with each request.
            api_key: NCBI API key; raises the rate limit to 10 requests/s.
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.email = email
        self.api_key = api_key
        rate = NCBI_RATE_LIMIT_WITH_KEY if api_key else NCBI_RATE_LIMIT
        self._min_interval = 1.0 / rate
        self._last_request = 0.0
        self._throttle_lock = threading.Lock()
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=NCBI_EUTILS_BASE,
                timeout=self.timeout,
                headers={"Accept": "application/xml"},
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        self.close()

    def _throttle(self) -> None:
        """Block until the next request fits the rate limit."""
        with self._throttle_lock:
            wait = self._last_request + self._min_interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _params(self, taxon_id: str) -> dict[str, str]:
        params = {"db": "taxonomy", "id": taxon_id, "retmode": "xml"}
        if self.email:
            params["email"] = self.email
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    def lookup(self, taxon_id: str) -> TaxonomicPath | None:
        """Resolve one taxid.

        Returns:
            TaxonomicPath, or None if NCBI does not know the taxid

        Raises:
            TaxonomyLookupError: If the request fails after all retries
        """
        body = self._get("/efetch.fcgi", taxon_id)
        path = parse_taxonomy_xml(body)
        if path is None:
            logger.debug("No classification for taxid %s", taxon_id)
        return path

    def _get(self, endpoint: str, taxon_id: str) -> str:
        """Make GET request to E-utilities with retry logic.

        Implements exponential backoff for transient failures (5xx errors,
        connection errors, rate limiting).

        Raises:
            TaxonomyLookupError: If request fails after all retries
        """
        client = self._get_client()
        params = self._params(taxon_id)
        last_exception: Exception | None = None
        delay = self.retry_delay

        for attempt in range(self.max_retries + 1):
            try:
                self._throttle()
                response = client.get(endpoint, params=params)
                response.raise_for_status()
                return response.text

            except httpx.HTTPStatusError as e:
                last_exception = e
                status_code = e.response.status_code

                # Don't retry client errors (4xx) except rate limiting (429)
                if 400 <= status_code < 500 and status_code != 429:
                    raise TaxonomyLookupError(
                        taxon_id,
                        f"NCBI request failed: {status_code}",
                        status_code=status_code,
                    ) from e

                if status_code == 429:
                    retry_after = parse_retry_after(e.response.headers.get("Retry-After"))
                    if retry_after is not None:
                        delay = retry_after

                if attempt < self.max_retries:
                    logger.warning(
                        "NCBI request for taxid %s failed (attempt %d/%d): %s. "
                        "Retrying in %.1fs...",
                        taxon_id,
                        attempt + 1,
                        self.max_retries + 1,
                        status_code,
                        delay,
                    )
                    time.sleep(delay)
                    delay *= self.retry_backoff

            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    logger.warning(
                        "NCBI connection error for taxid %s (attempt %d/%d): %s. "
                        "Retrying in %.1fs...",
                        taxon_id,
                        attempt + 1,
                        self.max_retries + 1,
                        str(e),
                        delay,
                    )
                    time.sleep(delay)
                    delay *= self.retry_backoff

        # All retries exhausted
        if isinstance(last_exception, httpx.HTTPStatusError):
            raise TaxonomyLookupError(
                taxon_id,
                f"NCBI request failed after {self.max_retries + 1} attempts: "
                f"{last_exception.response.status_code}",
                status_code=last_exception.response.status_code,
            ) from last_exception
        raise TaxonomyLookupError(
            taxon_id,
            f"NCBI request failed after {self.max_retries + 1} attempts: "
            f"{last_exception}",
        ) from last_exception
