import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID, uuid4

from .errors import InvalidInputError, NotFoundError
from .models import (
    Artist,
    AuditReport,
    Balance,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    LedgerHistoryResponse,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def compute_totals(entries: Iterable[dict]) -> tuple[Decimal, Decimal]:
    """Return (total_earnings, withdrawn_amount) as implied by ledger entries.

    Earnings are gross: every non-withdrawal entry counts. Withdrawals count
    unless they failed, in which case the funds are back in the balance.
    """
    total_earnings = Decimal("0")
    withdrawn = Decimal("0")
    for e in entries:
        if e["kind"] == EntryKind.WITHDRAWAL:
            if e["status"] != EntryStatus.FAILED:
                withdrawn += -e["amount"]
        else:
            total_earnings += e["amount"]
    return total_earnings, withdrawn


def new_entry(artist_id: UUID, amount: Decimal, kind: EntryKind, status: EntryStatus, created_at: datetime, **fields) -> dict:
    entry = {
        "id": uuid4(),
        "artist_id": artist_id,
        "amount": amount,
        "kind": kind,
        "status": status,
        "track_id": None,
        "withdrawal_address": None,
        "withdrawal_token": None,
        "external_order_id": None,
        "note": None,
        "created_at": created_at,
        "resolved_at": created_at if status != EntryStatus.PENDING else None,
    }
    entry.update(fields)
    return entry


def balance_of(artist: Artist) -> Balance:
    return Balance(
        artist_id=artist.id,
        wallet_address=artist.wallet_address,
        total_earnings=artist.total_earnings,
        available_balance=artist.available_balance,
        withdrawn_amount=artist.withdrawn_amount,
    )


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def get_artist(self, artist_id: UUID) -> Artist:
        data = self.storage.get_artist(artist_id)
        if not data:
            raise NotFoundError(f"Artist {artist_id} not found")
        return Artist(**data)

    def get_artist_by_wallet(self, wallet_address: Optional[str]) -> Artist:
        if not wallet_address:
            raise InvalidInputError("Wallet address required")
        data = self.storage.get_artist_by_wallet(wallet_address)
        if not data:
            raise NotFoundError(f"Artist {wallet_address.lower()} not found")
        return Artist(**data)

    def get_balance(self, artist_id: UUID) -> Balance:
        return balance_of(self.get_artist(artist_id))

    def list_entries(
        self,
        artist_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        before: Optional[datetime] = None,
        kind: Optional[EntryKind] = None,
    ) -> LedgerHistoryResponse:
        """Most recent entries first. Pass the returned ``next_cursor`` as
        ``before`` to fetch the following page."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        artist = self.get_artist(artist_id)

        entries = self.storage.entries_for_artist(artist_id)
        if kind is not None:
            entries = [e for e in entries if e["kind"] == kind]
        if before is not None:
            if before.tzinfo is None:
                before = before.replace(tzinfo=timezone.utc)
            entries = [e for e in entries if e["created_at"] < before]
        entries.sort(key=lambda e: e["created_at"], reverse=True)

        page = entries[:limit]
        next_cursor = page[-1]["created_at"] if len(entries) > limit else None
        return LedgerHistoryResponse(
            artist_id=artist_id,
            entries=[LedgerEntry(**e) for e in page],
            next_cursor=next_cursor,
            available_balance=artist.available_balance,
        )

    def audit(self, artist_id: UUID, repair: bool = False) -> AuditReport:
        """Recompute counters from the ledger and compare with the stored ones."""
        with self.storage.artist_transaction(artist_id) as uow:
            data = self.storage.get_artist(artist_id)
            if not data:
                raise NotFoundError(f"Artist {artist_id} not found")
            artist = Artist(**data)
            entries = self.storage.entries_for_artist(artist_id)
            total_earnings, withdrawn = compute_totals(entries)
            stream_count = sum(1 for e in entries if e["kind"] == EntryKind.STREAM)

            expected = Artist(**{
                **data,
                "total_earnings": total_earnings,
                "withdrawn_amount": withdrawn,
                "total_streams": stream_count,
            })
            mismatches = []
            for field in ("total_earnings", "withdrawn_amount", "total_streams"):
                recorded_value = getattr(artist, field)
                expected_value = getattr(expected, field)
                if recorded_value != expected_value:
                    mismatches.append(f"{field}: recorded {recorded_value}, ledger {expected_value}")

            if mismatches:
                logger.warning("Ledger drift for artist %s: %s", artist_id, "; ".join(mismatches))
                if repair:
                    uow.save_artist(expected.model_dump())
                    logger.info("Repaired counters for artist %s from %d ledger entries", artist_id, len(entries))

        return AuditReport(
            artist_id=artist_id,
            consistent=not mismatches,
            repaired=bool(mismatches) and repair,
            entry_count=len(entries),
            expected=balance_of(expected),
            recorded=balance_of(artist),
            mismatches=mismatches,
        )
