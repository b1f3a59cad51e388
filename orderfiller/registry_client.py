"""Async HTTP client for the order registry.

Fetches order terms by hash from the 1inch order-book API, or from any
proxy exposing the same payload under a different path.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .exceptions import OrderNotFound, RegistryException

DEFAULT_ORDER_PATH = "/orderbook/v4.0/{chain_id}/order/{order_hash}"
DEFAULT_MAKER_ORDERS_PATH = "/orderbook/v4.0/{chain_id}/address/{address}"


class RegistryHTTPError(RegistryException):
    def __init__(self, status: int, text: str):
        self.status = status
        self.text = text
        super().__init__(f"HTTP {status}: {text}")


class OrderRegistryClient:
    def __init__(
        self,
        base_url: str,
        chain_id: int = 1,
        api_key: Optional[str] = None,
        timeout: int = 10,
        logger: Optional[logging.Logger] = None,
        verify_ssl: bool = True,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        order_path: str = DEFAULT_ORDER_PATH,
        maker_orders_path: str = DEFAULT_MAKER_ORDERS_PATH,
        page_limit: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = int(chain_id)
        self.api_key = api_key
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.verify_ssl = verify_ssl
        self.max_retries = max(0, int(max_retries))
        self.backoff_seconds = float(backoff_seconds)
        self.order_path = order_path
        self.maker_orders_path = maker_orders_path
        self.page_limit = max(1, min(int(page_limit), 500))

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``endpoint`` with exponential backoff on transport failures only."""
        url = f"{self.base_url}{endpoint}"
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            if attempt:
                await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))
            try:
                return await self._fetch(url, params)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.logger.warning(f"Registry unreachable ({url}), attempt {attempt + 1}: {e}")
                last_error = e
        raise RegistryException(f"Registry unreachable: {last_error}") from last_error

    async def _fetch(self, url: str, params: Optional[Dict[str, Any]]) -> Any:
        connector = aiohttp.TCPConnector(ssl=self.verify_ssl)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            async with session.get(url, headers=self._headers(), params=params) as resp:
                if resp.status >= 400:
                    raise RegistryHTTPError(resp.status, await resp.text())
                try:
                    return await resp.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    body = await resp.text()
                    raise RegistryException(f"Invalid JSON from {url}: {e} ({body[:200]})") from e

    async def fetch_order(self, order_hash: str) -> Dict[str, Any]:
        """Fetch order terms by hash.

        Raises ``OrderNotFound`` for any non-2xx answer or an empty body and
        ``RegistryException`` when the registry cannot be reached.
        """
        endpoint = self.order_path.format(chain_id=self.chain_id, order_hash=order_hash)
        try:
            data = await self._get_json(endpoint)
        except RegistryHTTPError as e:
            raise OrderNotFound(f"Order {order_hash} not found in registry ({e})") from e

        # Some proxies wrap the order in a list or an envelope
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict) and isinstance(data.get("order"), dict):
            data = data["order"]
        if not isinstance(data, dict) or not data:
            raise OrderNotFound(f"Order {order_hash} not found in registry (empty response)")
        return data

    async def fetch_orders_by_maker(self, address: str, statuses: Optional[List[int]] = None) -> List[Dict[str, Any]]:
        """List orders created by ``address``; empty on registry errors."""
        endpoint = self.maker_orders_path.format(chain_id=self.chain_id, address=address)
        params: Dict[str, Any] = {"limit": self.page_limit}
        if statuses:
            params["statuses"] = ",".join(str(s) for s in statuses)
        try:
            data = await self._get_json(endpoint, params=params)
        except RegistryException as e:
            self.logger.error(f"Failed to fetch orders for {address}: {e}")
            return []
        return data if isinstance(data, list) else []
