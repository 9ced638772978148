"""Display-only price lookups.

Prices feed fiat estimates on screen and nothing else: a failing oracle
degrades to "no estimate" and never blocks a ledger flow.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from piggybank.errors import InvalidAmount, TransientUnavailable
from piggybank.units import UnitConverter, parse_decimal

logger = logging.getLogger("chain.oracle")

CENT = Decimal("0.01")


class PriceOracle(Protocol):
    async def price(self, asset_type: str) -> Decimal: ...


class HttpPriceOracle:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def price(self, asset_type: str) -> Decimal:
        try:
            response = await self.client.get("/prices", params={"coin_types": asset_type})
            response.raise_for_status()
            body = response.json()
        except (httpx.TransportError, httpx.HTTPStatusError, ValueError) as e:
            raise TransientUnavailable(f"Price oracle unavailable: {e}") from e

        raw = (body.get("prices") or {}).get(asset_type) if isinstance(body, dict) else None
        try:
            value = parse_decimal(raw)
        except InvalidAmount as e:
            raise TransientUnavailable(f"Invalid price received for {asset_type}: {raw!r}") from e
        if value <= 0:
            raise TransientUnavailable(f"Invalid price received for {asset_type}: {raw!r}")
        return value


class PriceFeed:
    """Polls an oracle with bounded exponential backoff and keeps the last price."""

    def __init__(
        self,
        oracle: PriceOracle,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.oracle = oracle
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._sleep = sleep
        self._prices: dict[str, Decimal] = {}

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * 2**attempt, self.backoff_cap)

    async def fetch(self, asset_type: str) -> Decimal:
        attempt = 0
        while True:
            try:
                price = await self.oracle.price(asset_type)
            except TransientUnavailable:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff_delay(attempt)
                logger.info("price_retry", extra={"asset_type": asset_type, "attempt": attempt + 1})
                await self._sleep(delay)
                attempt += 1
                continue
            self._prices[asset_type] = price
            return price

    async def refresh(self, asset_type: str) -> Optional[Decimal]:
        try:
            return await self.fetch(asset_type)
        except TransientUnavailable:
            logger.warning("price_unavailable", extra={"asset_type": asset_type}, exc_info=True)
            return self._prices.get(asset_type)

    def latest(self, asset_type: str) -> Optional[Decimal]:
        return self._prices.get(asset_type)

    def fiat_estimate(self, smallest_amount: int, converter: UnitConverter, asset_type: str) -> Optional[Decimal]:
        price = self.latest(asset_type)
        if price is None:
            return None
        amount = Decimal(converter.to_decimal_unit(smallest_amount))
        return (amount * price).quantize(CENT)

    async def run(self, asset_types: list[str], interval: float, stop: asyncio.Event) -> None:
        while not stop.is_set():
            for asset_type in asset_types:
                await self.refresh(asset_type)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
