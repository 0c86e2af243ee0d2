from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator


class EntryKind(str, Enum):
    STREAM = "stream"
    TIP = "tip"
    NFT_SALE = "nft_sale"
    WITHDRAWAL = "withdrawal"


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WalletRequest(BaseModel):
    wallet_address: Optional[str] = None

    @field_validator("wallet_address")
    @classmethod
    def normalize_wallet(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        return value or None


class Artist(BaseModel):
    id: UUID
    wallet_address: str
    artist_name: str
    price_per_stream: Decimal = Decimal("0.001")
    total_streams: int = 0
    total_earnings: Decimal = Decimal("0")
    withdrawn_amount: Decimal = Decimal("0")
    version: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def available_balance(self) -> Decimal:
        return self.total_earnings - self.withdrawn_amount


class Track(BaseModel):
    id: UUID
    artist_id: UUID
    title: str
    play_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: UUID
    artist_id: UUID
    amount: Decimal
    kind: EntryKind
    status: EntryStatus
    track_id: Optional[UUID] = None
    withdrawal_address: Optional[str] = None
    withdrawal_token: Optional[str] = None
    external_order_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def can_resolve(self) -> bool:
        return self.kind == EntryKind.WITHDRAWAL and self.status == EntryStatus.PENDING


class StreamEvent(BaseModel):
    id: UUID
    track_id: UUID
    artist_id: UUID
    listener_id: Optional[UUID] = None
    wallet_address: str
    duration_seconds: float
    completed: bool
    earned_amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlaybackSession(BaseModel):
    token: str
    track_id: UUID
    wallet_address: str
    issued_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None


class StartPlaybackRequest(WalletRequest):
    track_id: UUID


class StreamReportRequest(WalletRequest):
    track_id: UUID
    duration_seconds: float = Field(default=0, ge=0, allow_inf_nan=False, description="Seconds listened")
    completed: bool = False
    session_token: Optional[str] = Field(default=None, description="Token from /streams/sessions")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "track_id": "7d5c2a3e-9b1f-4a52-8f63-1f3a2b4c5d6e",
            "wallet_address": "0x8ba1f109551bd432803012645ac136ddd64dba72",
            "duration_seconds": 45,
            "completed": True,
        }
    })


class TipRequest(WalletRequest):
    wallet_address: Optional[str] = Field(default=None, description="Artist wallet receiving the tip")
    amount: Decimal
    note: Optional[str] = None


class WithdrawRequest(WalletRequest):
    amount: Optional[Decimal] = None
    target_token: Optional[str] = None
    target_address: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "wallet_address": "0xab5801a7d398351b8be11c439e05c5b3259aec9b",
            "amount": 25.00,
            "target_token": "eth",
            "target_address": "0x1f9090aae28b8a3dceadf281b0f12828e676c326",
        }
    })


class PlaybackSessionResponse(BaseModel):
    token: str
    track_id: UUID
    expires_at: datetime


class StreamResult(BaseModel):
    play_count: int
    earned_amount: Decimal
    stream_event: StreamEvent
    ledger_entry: Optional[LedgerEntry] = None


class Balance(BaseModel):
    artist_id: UUID
    wallet_address: str
    total_earnings: Decimal
    available_balance: Decimal
    withdrawn_amount: Decimal


class LedgerHistoryResponse(BaseModel):
    artist_id: UUID
    entries: list[LedgerEntry]
    next_cursor: Optional[datetime] = None
    available_balance: Decimal


class AuditReport(BaseModel):
    artist_id: UUID
    consistent: bool
    repaired: bool = False
    entry_count: int
    expected: Balance
    recorded: Balance
    mismatches: list[str] = Field(default_factory=list)


class ExchangeQuote(BaseModel):
    id: str
    deposit_coin: str
    settle_coin: str
    deposit_amount: Decimal
    settle_amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    expires_at: Optional[datetime] = None


class ExchangeOrder(BaseModel):
    id: str
    status: str
    deposit_address: Optional[str] = None
    deposit_coin: Optional[str] = None
    settle_coin: Optional[str] = None
    settle_address: Optional[str] = None
    deposit_amount: Optional[Decimal] = None
    settle_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class WithdrawalResponse(BaseModel):
    ledger_entry: LedgerEntry
    external_order: ExchangeOrder
    message: str


class ReconcileResponse(BaseModel):
    ledger_entry: LedgerEntry
    external_status: str
    changed: bool
    available_balance: Decimal


class DailyStat(BaseModel):
    day: date
    streams: int
    earnings: Decimal


class ArtistAnalytics(BaseModel):
    total_streams: int = 0
    total_earnings: Decimal = Decimal("0")
    available_balance: Decimal = Decimal("0")
    period_streams: int = 0
    period_earnings: Decimal = Decimal("0")
    daily_stats: list[DailyStat] = Field(default_factory=list)
    top_tracks: list[Track] = Field(default_factory=list)
    recent_streams: list[StreamEvent] = Field(default_factory=list)
    monthly_listeners: int = 0


class PlatformAnalytics(BaseModel):
    total_streams: int
    total_tracks: int
    total_artists: int
