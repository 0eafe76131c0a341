"""
Company size enrichment.
Best-effort: any failure degrades to the mid-tier segment instead of raising.
"""

import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from app.config import settings
from app.models.enums import DealSegment
from app.observability.metrics import external_api_latency_seconds
from app.pipeline.title_parser import guess_company_domain

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EnrichmentResult:
    employee_count: Optional[int]
    segment: str


FALLBACK = EnrichmentResult(employee_count=None, segment=DealSegment.MID_TIER.value)


def segment_for(employee_count: Optional[int], threshold: Optional[int] = None) -> str:
    limit = settings.ENTERPRISE_EMPLOYEE_THRESHOLD if threshold is None else threshold
    if employee_count is not None and employee_count >= limit:
        return DealSegment.ENTERPRISE.value
    return DealSegment.MID_TIER.value


class CompanyEnrichmentClient:
    """Looks up organization headcount by guessed domain."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.ENRICHMENT_API_KEY
        self._base_url = base_url or settings.ENRICHMENT_API_URL
        self._transport = transport

    async def lookup_company_size(self, company_name: Optional[str]) -> EnrichmentResult:
        if not company_name:
            return FALLBACK
        if not self._api_key:
            logger.warning("enrichment_not_configured", company=company_name)
            return FALLBACK

        domain = guess_company_domain(company_name)
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=settings.ENRICHMENT_TIMEOUT_SECONDS,
                headers={"x-api-key": self._api_key, "Content-Type": "application/json"},
                transport=self._transport,
            ) as client:
                response = await client.get("/organizations/enrich", params={"domain": domain})
        except httpx.HTTPError as e:
            logger.warning("enrichment_failed", domain=domain, error=str(e))
            return FALLBACK
        finally:
            external_api_latency_seconds.labels(
                service="enrichment", operation="organization_enrich",
            ).observe(time.perf_counter() - started)

        if response.status_code != 200:
            logger.warning("enrichment_bad_status", domain=domain, status_code=response.status_code)
            return FALLBACK

        try:
            organization = response.json().get("organization") or {}
        except ValueError:
            logger.warning("enrichment_bad_json", domain=domain)
            return FALLBACK
        employee_count = organization.get("estimated_num_employees")
        if not isinstance(employee_count, int):
            employee_count = None

        result = EnrichmentResult(employee_count=employee_count, segment=segment_for(employee_count))
        logger.info("enrichment_complete", domain=domain,
                    employee_count=employee_count, segment=result.segment)
        return result
