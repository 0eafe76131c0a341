"""
CRM collaborator: pipeline deals with their associated company and contacts.

Requests are spaced by a fixed delay to stay under the CRM's rate limit; a 429
is retried after the server's ``Retry-After`` (exponential backoff when absent).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.errors import ConfigError, UpstreamError

logger = structlog.get_logger(__name__)

_exponential = wait_exponential(multiplier=2, min=2, max=60)


@dataclass
class CrmDeal:
    deal_id: str
    deal_name: str
    company_name: Optional[str] = None
    contact_emails: list[str] = field(default_factory=list)


class RateLimitedError(UpstreamError):
    def __init__(self, retry_after: Optional[float]):
        self.retry_after = retry_after
        super().__init__(f"CRM rate limited (retry after {retry_after}s)")


def _wait_retry_after(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
        return exc.retry_after
    return _exponential(retry_state)


class CrmClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        request_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        key = api_key or settings.CRM_API_KEY
        if not key:
            raise ConfigError("CRM_API_KEY not set")
        self._delay = settings.CRM_REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.CRM_API_URL,
            timeout=30,
            headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(settings.CRM_MAX_RETRIES),
        wait=_wait_retry_after,
        retry=retry_if_exception_type(RateLimitedError),
        reraise=True,
    )
    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        await asyncio.sleep(self._delay)
        response = await self._client.request(method, path, json=json)

        if response.status_code == 429:
            header = response.headers.get("retry-after")
            try:
                retry_after = float(header) if header is not None else None
            except ValueError:
                retry_after = None
            logger.warning("crm_rate_limited", path=path, retry_after=retry_after)
            raise RateLimitedError(retry_after)

        if response.status_code >= 400:
            raise UpstreamError(f"CRM API {response.status_code}: {response.text[:300]}")
        return response.json()

    async def fetch_pipeline_deals(self, pipeline_id: str, stage_id: Optional[str] = None) -> list[CrmDeal]:
        """
        Every deal that entered the pipeline, whatever stage it sits in now.
        Each deal in the sales pipeline started from a first qualifying call,
        so ``stage_id`` is recorded for the run but not used as a filter.
        """
        deals: list[CrmDeal] = []
        after: Optional[str] = None

        while True:
            body: dict[str, Any] = {
                "filterGroups": [
                    {"filters": [{"propertyName": "pipeline", "operator": "EQ", "value": pipeline_id}]}
                ],
                "properties": ["dealname"],
                "limit": 100,
            }
            if after:
                body["after"] = after

            data = await self._request("POST", "/crm/v3/objects/deals/search", json=body)
            results = data.get("results") or []
            logger.info("crm_deals_page", count=len(results), total=data.get("total"))

            for deal in results:
                deals.append(await self._enrich_deal(
                    str(deal["id"]), (deal.get("properties") or {}).get("dealname") or "",
                ))

            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break

        return deals

    async def _enrich_deal(self, deal_id: str, deal_name: str) -> CrmDeal:
        company_name = await self._associated_company_name(deal_id)
        contact_emails = await self._associated_contact_emails(deal_id)
        return CrmDeal(deal_id=deal_id, deal_name=deal_name,
                       company_name=company_name, contact_emails=contact_emails)

    async def _associated_company_name(self, deal_id: str) -> Optional[str]:
        try:
            assoc = await self._request("GET", f"/crm/v3/objects/deals/{deal_id}/associations/companies")
            results = assoc.get("results") or []
            if not results:
                return None
            company = await self._request(
                "GET", f"/crm/v3/objects/companies/{results[0]['id']}?properties=name"
            )
            return (company.get("properties") or {}).get("name")
        except UpstreamError as e:
            logger.warning("crm_company_lookup_failed", deal_id=deal_id, error=str(e))
            return None

    async def _associated_contact_emails(self, deal_id: str) -> list[str]:
        try:
            assoc = await self._request("GET", f"/crm/v3/objects/deals/{deal_id}/associations/contacts")
            emails: list[str] = []
            for contact in assoc.get("results") or []:
                detail = await self._request(
                    "GET", f"/crm/v3/objects/contacts/{contact['id']}?properties=email"
                )
                email = (detail.get("properties") or {}).get("email")
                if email:
                    emails.append(email.lower())
            return emails
        except UpstreamError as e:
            logger.warning("crm_contact_lookup_failed", deal_id=deal_id, error=str(e))
            return []
