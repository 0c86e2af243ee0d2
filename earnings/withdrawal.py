"""Artist withdrawals through the exchange gateway.

The balance is only debited after the gateway has accepted the order. While
the gateway call is in flight the amount is held as a reservation, so a second
withdrawal for the same artist cannot spend the same funds.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .config import Settings, get_settings
from .errors import (
    ConsistencyFaultError,
    ExternalServiceError,
    InsufficientBalanceError,
    InvalidInputError,
    NotFoundError,
)
from .exchange import (
    FAILED_STATUSES,
    SETTLED_STATUSES,
    ExchangeGateway,
    ExchangeGatewayError,
    SideShiftGateway,
)
from .models import (
    Artist,
    EntryKind,
    EntryStatus,
    ExchangeOrder,
    LedgerEntry,
    ReconcileResponse,
    WithdrawalResponse,
    WithdrawRequest,
)
from .service import LedgerService, new_entry
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

MINIMUM_WITHDRAWAL = Decimal("1")


class WithdrawalService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        gateway: Optional[ExchangeGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.gateway = gateway or SideShiftGateway(self.settings)
        self.ledger = LedgerService(self.storage)

    def withdraw(self, request: WithdrawRequest) -> WithdrawalResponse:
        if not (request.wallet_address and request.amount is not None
                and request.target_token and request.target_address):
            raise InvalidInputError("Missing required fields")
        artist = self.ledger.get_artist_by_wallet(request.wallet_address)
        amount = request.amount
        if amount < MINIMUM_WITHDRAWAL:
            raise InvalidInputError(f"Minimum withdrawal amount is ${MINIMUM_WITHDRAWAL}")

        with self.storage.artist_transaction(artist.id):
            artist = Artist(**self.storage.get_artist(artist.id))
            spendable = artist.available_balance - self.storage.reserved_amount(artist.id)
            if spendable < amount:
                raise InsufficientBalanceError("Insufficient balance")
            self.storage.reserve(artist.id, amount)

        try:
            order = self._open_order(amount, request.target_token, request.target_address)
            entry = self._record_withdrawal(artist.id, amount, request, order)
        finally:
            self.storage.release(artist.id, amount)

        logger.info(
            "Withdrawal of %s %s to %s for artist %s opened as order %s",
            amount, request.target_token.upper(), request.target_address, artist.id, order.id,
        )
        return WithdrawalResponse(
            ledger_entry=LedgerEntry(**entry),
            external_order=order,
            message="Withdrawal initiated successfully",
        )

    def _open_order(self, amount: Decimal, target_token: str, target_address: str) -> ExchangeOrder:
        try:
            quote = self.gateway.quote(self.settings.SETTLEMENT_COIN, target_token.lower(), amount)
            return self.gateway.create_order(quote.id, target_address, self.settings.REFUND_ADDRESS)
        except ExchangeGatewayError as e:
            logger.warning("Exchange order for %s %s failed: %s", amount, target_token, e)
            raise ExternalServiceError(f"Exchange gateway failed: {e}") from e

    def _record_withdrawal(self, artist_id: UUID, amount: Decimal, request: WithdrawRequest, order: ExchangeOrder) -> dict:
        try:
            with self.storage.artist_transaction(artist_id) as uow:
                data = self.storage.get_artist(artist_id)
                uow.save_artist({**data, "withdrawn_amount": data["withdrawn_amount"] + amount})
                entry = new_entry(
                    artist_id, -amount, EntryKind.WITHDRAWAL, EntryStatus.PENDING, self.storage.now(),
                    withdrawal_address=request.target_address,
                    withdrawal_token=request.target_token,
                    external_order_id=order.id,
                    note=f"Withdrawal to {request.target_token.upper()}",
                )
                uow.add_ledger_entry(entry)
            return entry
        except Exception as e:
            logger.critical(
                "Exchange order %s for %s (artist %s, to %s) has no ledger record: %s",
                order.id, amount, artist_id, request.target_address, e,
            )
            raise ConsistencyFaultError(
                f"Withdrawal order {order.id} was created but could not be recorded", order.id,
            ) from e

    def get_withdrawal_status(self, order_id: str) -> ExchangeOrder:
        try:
            return self.gateway.get_order_status(order_id)
        except ExchangeGatewayError as e:
            raise ExternalServiceError(f"Exchange gateway failed: {e}") from e

    def list_withdrawals(self, wallet_address: Optional[str], limit: int = 20) -> list[LedgerEntry]:
        artist = self.ledger.get_artist_by_wallet(wallet_address)
        return self.ledger.list_entries(artist.id, limit=limit, kind=EntryKind.WITHDRAWAL).entries

    def supported_coins(self) -> list[str]:
        try:
            return self.gateway.supported_coins()
        except ExchangeGatewayError as e:
            raise ExternalServiceError(f"Exchange gateway failed: {e}") from e

    def reconcile_withdrawal(self, entry_id: UUID) -> ReconcileResponse:
        """Write the exchange order's terminal status back to its ledger entry.

        A failed or refunded order returns the amount to the available balance.
        """
        data = self.storage.get_ledger_entry(entry_id)
        if not data:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        entry = LedgerEntry(**data)
        if entry.kind != EntryKind.WITHDRAWAL:
            raise InvalidInputError(f"Ledger entry {entry_id} is not a withdrawal")
        if not entry.can_resolve():
            artist = self.ledger.get_artist(entry.artist_id)
            return ReconcileResponse(
                ledger_entry=entry, external_status=entry.status.value,
                changed=False, available_balance=artist.available_balance,
            )

        order = self.get_withdrawal_status(entry.external_order_id)
        if order.status in SETTLED_STATUSES:
            new_status = EntryStatus.COMPLETED
        elif order.status in FAILED_STATUSES:
            new_status = EntryStatus.FAILED
        else:
            new_status = None

        changed = False
        with self.storage.artist_transaction(entry.artist_id) as uow:
            current = LedgerEntry(**self.storage.get_ledger_entry(entry_id))
            artist_data = self.storage.get_artist(entry.artist_id)
            if new_status and current.can_resolve():
                now = self.storage.now()
                uow.update_entry(entry_id, status=new_status, resolved_at=now)
                if new_status == EntryStatus.FAILED:
                    artist_data = {**artist_data, "withdrawn_amount": artist_data["withdrawn_amount"] + current.amount}
                    uow.save_artist(artist_data)
                current = current.model_copy(update={"status": new_status, "resolved_at": now})
                changed = True

        if changed:
            logger.info("Withdrawal %s (order %s) resolved as %s", entry_id, order.id, new_status.value)
        return ReconcileResponse(
            ledger_entry=current,
            external_status=order.status,
            changed=changed,
            available_balance=Artist(**artist_data).available_balance,
        )

    def reconcile_pending(self, wallet_address: Optional[str]) -> list[ReconcileResponse]:
        artist = self.ledger.get_artist_by_wallet(wallet_address)
        pending = [
            e for e in self.storage.entries_for_artist(artist.id)
            if e["kind"] == EntryKind.WITHDRAWAL and e["status"] == EntryStatus.PENDING
        ]
        results = []
        for e in sorted(pending, key=lambda e: e["created_at"]):
            try:
                results.append(self.reconcile_withdrawal(e["id"]))
            except ExternalServiceError as err:
                logger.warning("Could not reconcile withdrawal %s: %s", e["id"], err)
        return results
