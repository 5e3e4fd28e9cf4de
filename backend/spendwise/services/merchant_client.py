"""Merchant deal sources — HTTP aggregator client and the bundled sample catalog."""

import logging
from datetime import timedelta

import httpx
from pydantic import ValidationError

from spendwise.config import settings
from spendwise.data.sample_deals import SAMPLE_DEALS
from spendwise.exceptions import CollaboratorUnavailableError
from spendwise.schemas.deals import Deal
from spendwise.services.collaborators import DealSource
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_GUEST_COUNT = 2


def _in_price_range(deal: Deal, price_range: tuple[float, float] | None) -> bool:
    if price_range is None:
        return True
    low, high = price_range
    return low <= deal.discounted_price <= high


class MerchantClient:
    """Adapter for the merchant deal aggregator API."""

    name = "merchant-api"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url or settings.merchant_api_url
        self._api_key = api_key if api_key is not None else settings.merchant_api_key
        self._timeout = timeout or settings.merchant_api_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def fetch_deals(
        self,
        location: str | None = None,
        category: str | None = None,
        price_range: tuple[float, float] | None = None,
    ) -> list[Deal]:
        params: dict = {}
        if location:
            params["location"] = location
        if category:
            params["category"] = category
        if price_range:
            params["min_price"], params["max_price"] = price_range

        try:
            client = await self._get_client()
            resp = await client.get("/deals", params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorUnavailableError(self.name, f"deal fetch failed: {e}") from e
        if not isinstance(data, dict):
            raise CollaboratorUnavailableError(self.name, "unexpected response shape")

        deals = []
        for raw in data.get("deals", []):
            try:
                deals.append(Deal.model_validate(raw))
            except ValidationError as e:
                deal_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
                logger.warning(f"Skipping malformed deal {deal_id}: {e.error_count()} errors")
        logger.info(f"Fetched {len(deals)} deals from merchant API")
        return deals

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None


class SampleDealSource:
    """Serves the demo catalog with the same filters as the merchant API."""

    name = "sample-catalog"

    def __init__(self, clock: Clock | None = None, catalog: list[dict] | None = None):
        self.clock = clock or SystemClock()
        self.catalog = catalog if catalog is not None else SAMPLE_DEALS

    async def fetch_deals(
        self,
        location: str | None = None,
        category: str | None = None,
        price_range: tuple[float, float] | None = None,
    ) -> list[Deal]:
        now = self.clock.now()
        deals = []
        for entry in self.catalog:
            fields = {k: v for k, v in entry.items() if k != "valid_days"}
            deal = Deal(**fields, valid_until=now + timedelta(days=entry["valid_days"]))
            if location and location.lower() not in deal.location.lower():
                continue
            if category and deal.category != category:
                continue
            if not _in_price_range(deal, price_range):
                continue
            deals.append(deal)
        return deals


async def fetch_dining_deals(
    source: DealSource,
    location: str,
    budget_per_hour: float,
    guest_count: int = DEFAULT_GUEST_COUNT,
) -> list[Deal]:
    """Dining deals whose hourly spend for the whole party fits the hourly budget."""
    deals = await source.fetch_deals(location=location, category="dining")
    fitting = [
        d for d in deals
        if d.category == "dining"
        and d.average_spend_per_hour
        and d.average_spend_per_hour * guest_count <= budget_per_hour
    ]
    logger.info(
        f"Found {len(fitting)} dining deals within {settings.default_currency} "
        f"{budget_per_hour:,.0f}/hour for {guest_count} guests"
    )
    return fitting
