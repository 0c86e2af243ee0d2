"""SideShift exchange gateway client.

Withdrawals convert the artist's settlement-currency balance into the token of
their choice. The gateway is never retried from here: a retry after a call
that may have reached SideShift risks opening a second order.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import httpx

from .config import Settings, get_settings
from .models import ExchangeOrder, ExchangeQuote

logger = logging.getLogger(__name__)

SETTLED_STATUSES = frozenset({"settled"})
FAILED_STATUSES = frozenset({"refund", "refunding", "refunded", "failed", "expired"})


class ExchangeGatewayError(RuntimeError):
    """Raised when the gateway is unreachable, times out or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExchangeGateway(ABC):
    @abstractmethod
    def quote(self, from_asset: str, to_asset: str, amount: Decimal) -> ExchangeQuote:
        ...

    @abstractmethod
    def create_order(self, quote_id: str, settle_address: str, refund_address: Optional[str]) -> ExchangeOrder:
        ...

    @abstractmethod
    def get_order_status(self, order_id: str) -> ExchangeOrder:
        ...

    @abstractmethod
    def supported_coins(self) -> list[str]:
        ...


def _decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    return Decimal(str(value))


def parse_order(data: dict) -> ExchangeOrder:
    if not isinstance(data, dict) or "id" not in data:
        raise ExchangeGatewayError("SideShift response has no order id")
    return ExchangeOrder(
        id=str(data["id"]),
        status=str(data.get("status", "waiting")).lower(),
        deposit_address=data.get("depositAddress"),
        deposit_coin=data.get("depositCoin"),
        settle_coin=data.get("settleCoin"),
        settle_address=data.get("settleAddress"),
        deposit_amount=_decimal(data.get("depositAmount")),
        settle_amount=_decimal(data.get("settleAmount")),
        created_at=data.get("createdAt"),
        raw=data,
    )


class SideShiftGateway(ExchangeGateway):
    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self._client = client or httpx.Client(
            base_url=self.settings.SIDESHIFT_API_URL,
            timeout=self.settings.EXCHANGE_TIMEOUT_SECONDS,
        )

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.settings.SIDESHIFT_SECRET:
            headers["x-sideshift-secret"] = self.settings.SIDESHIFT_SECRET
        return headers

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            response = self._client.request(method, path, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ExchangeGatewayError(f"SideShift request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise ExchangeGatewayError(f"SideShift unreachable: {e}") from e

        if response.is_error:
            try:
                message = response.json().get("error", {}).get("message") or response.text
            except (ValueError, AttributeError):
                message = response.text
            logger.warning("SideShift %s %s failed with %s: %s", method, path, response.status_code, message)
            raise ExchangeGatewayError(f"SideShift rejected request: {message}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise ExchangeGatewayError(f"SideShift returned malformed JSON for {method} {path}") from e

    def quote(self, from_asset: str, to_asset: str, amount: Decimal) -> ExchangeQuote:
        data = self._request("POST", "/quotes", {
            "depositCoin": from_asset,
            "settleCoin": to_asset,
            "depositAmount": str(amount),
            "affiliateId": self.settings.SIDESHIFT_AFFILIATE_ID,
        })
        if not isinstance(data, dict) or "id" not in data:
            raise ExchangeGatewayError("SideShift response has no quote id")
        return ExchangeQuote(
            id=str(data["id"]),
            deposit_coin=data.get("depositCoin", from_asset),
            settle_coin=data.get("settleCoin", to_asset),
            deposit_amount=_decimal(data.get("depositAmount")) or amount,
            settle_amount=_decimal(data.get("settleAmount")),
            rate=_decimal(data.get("rate")),
            expires_at=data.get("expiresAt"),
        )

    def create_order(self, quote_id: str, settle_address: str, refund_address: Optional[str]) -> ExchangeOrder:
        payload = {
            "quoteId": quote_id,
            "settleAddress": settle_address,
            "affiliateId": self.settings.SIDESHIFT_AFFILIATE_ID,
        }
        if refund_address:
            payload["refundAddress"] = refund_address
        return parse_order(self._request("POST", "/shifts/fixed", payload))

    def get_order_status(self, order_id: str) -> ExchangeOrder:
        return parse_order(self._request("GET", f"/shifts/{order_id}"))

    def supported_coins(self) -> list[str]:
        data = self._request("GET", "/coins")
        if isinstance(data, dict):
            return list(data.keys())
        return [c["coin"] for c in data]

    def close(self) -> None:
        self._client.close()
