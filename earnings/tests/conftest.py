import itertools
import threading
from decimal import Decimal
from typing import Optional

import pytest

from earnings.config import Settings
from earnings.exchange import ExchangeGateway, ExchangeGatewayError
from earnings.models import ExchangeOrder, ExchangeQuote, TipRequest
from earnings.service import LedgerService
from earnings.settlement import SettlementService
from earnings.storage import InMemoryStorage
from earnings.withdrawal import WithdrawalService

ARTIST_WALLET = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
LISTENER_WALLET = "0x8ba1f109551bd432803012645ac136ddd64dba72"
TARGET_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


class FakeGateway(ExchangeGateway):
    """In-process exchange with failure injection.

    ``fail_on`` names the call that should raise: "quote", "order" or "status".
    """

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.orders: dict[str, ExchangeOrder] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)

    def quote(self, from_asset, to_asset, amount):
        self.calls.append("quote")
        if self.fail_on == "quote":
            raise ExchangeGatewayError("Pair not available", status_code=400)
        return ExchangeQuote(
            id=f"quote-{next(self._ids)}", deposit_coin=from_asset, settle_coin=to_asset,
            deposit_amount=amount, rate=Decimal("0.00031"),
        )

    def create_order(self, quote_id, settle_address, refund_address):
        self.calls.append("create_order")
        if self.fail_on == "order":
            raise ExchangeGatewayError("SideShift request timed out: POST /shifts/fixed")
        order = ExchangeOrder(
            id=f"shift-{next(self._ids)}", status="waiting",
            deposit_address="0x0000000000000000000000000000000000d3p0", settle_address=settle_address,
        )
        self.orders[order.id] = order
        return order

    def get_order_status(self, order_id):
        self.calls.append("get_order_status")
        if self.fail_on == "status":
            raise ExchangeGatewayError("SideShift unreachable")
        if order_id not in self.orders:
            raise ExchangeGatewayError(f"Shift {order_id} not found", status_code=404)
        return self.orders[order_id]

    def supported_coins(self):
        return ["btc", "eth", "sol", "usdc"]

    def set_status(self, order_id: str, status: str) -> None:
        self.orders[order_id] = self.orders[order_id].model_copy(update={"status": status})


class BlockingGateway(FakeGateway):
    """Holds create_order open until ``proceed`` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.proceed = threading.Event()

    def create_order(self, quote_id, settle_address, refund_address):
        self.entered.set()
        self.proceed.wait(timeout=5)
        return super().create_order(quote_id, settle_address, refund_address)


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def storage():
    return InMemoryStorage(seed=False)


@pytest.fixture
def artist(storage):
    return storage.create_artist(ARTIST_WALLET, "Mira Koss", price_per_stream=Decimal("0.001"))


@pytest.fixture
def track(storage, artist):
    return storage.create_track(artist["id"], "Low Tide")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ledger(storage):
    return LedgerService(storage)


@pytest.fixture
def settlement(storage, settings):
    return SettlementService(storage, settings)


@pytest.fixture
def withdrawals(storage, gateway, settings):
    return WithdrawalService(storage, gateway, settings)


@pytest.fixture
def fund(settlement):
    def _fund(amount: str, wallet: str = ARTIST_WALLET):
        return settlement.record_tip(TipRequest(wallet_address=wallet, amount=Decimal(amount)))
    return _fund


def assert_balance_matches_ledger(storage: InMemoryStorage, artist_id) -> None:
    entries = storage.entries_for_artist(artist_id)
    expected = sum((e["amount"] for e in entries if e["status"] != "failed"), Decimal("0"))
    artist = LedgerService(storage).get_artist(artist_id)
    assert artist.available_balance == expected
