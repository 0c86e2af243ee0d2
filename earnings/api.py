from datetime import datetime
from typing import Optional
from uuid import UUID
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .analytics import AnalyticsService
from .config import configure_logging, get_settings
from .errors import (
    ConsistencyFaultError, DuplicateStreamError, EarningsError, ExternalServiceError,
    InsufficientBalanceError, InvalidInputError, NotFoundError,
)
from .models import (
    ArtistAnalytics, AuditReport, Balance, ExchangeOrder, LedgerEntry, LedgerHistoryResponse,
    PlatformAnalytics, PlaybackSessionResponse, ReconcileResponse, StartPlaybackRequest,
    StreamReportRequest, StreamResult, TipRequest, WithdrawalResponse, WithdrawRequest,
)
from .service import LedgerService
from .settlement import SettlementService
from .storage import InMemoryStorage
from .withdrawal import WithdrawalService

ERROR_STATUS = {
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
    InsufficientBalanceError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateStreamError: status.HTTP_409_CONFLICT,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
    ConsistencyFaultError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

settings = get_settings()
configure_logging(settings)

app = FastAPI(
    title="Stream Earnings API",
    description="Per-stream artist earnings, balance ledger and crypto withdrawals",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage = InMemoryStorage(seed=settings.SEED_DEMO_DATA)
ledger_service = LedgerService(storage)
settlement_service = SettlementService(storage, settings)
withdrawal_service = WithdrawalService(storage, settings=settings)
analytics_service = AnalyticsService(storage)


def to_http(e: EarningsError) -> HTTPException:
    code = ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail={"error": e.kind, "message": str(e)})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "stream-earnings"}


@app.post("/streams/sessions", response_model=PlaybackSessionResponse, status_code=status.HTTP_201_CREATED, tags=["Streams"])
def start_playback(request: StartPlaybackRequest) -> PlaybackSessionResponse:
    try:
        return settlement_service.start_playback(request)
    except EarningsError as e:
        raise to_http(e)


@app.post("/streams", response_model=StreamResult, tags=["Streams"])
def record_stream(request: StreamReportRequest) -> StreamResult:
    try:
        return settlement_service.record_stream(request)
    except EarningsError as e:
        raise to_http(e)


@app.post("/tips", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED, tags=["Earnings"])
def record_tip(request: TipRequest) -> LedgerEntry:
    try:
        return settlement_service.record_tip(request)
    except EarningsError as e:
        raise to_http(e)


@app.get("/artists/{wallet}/balance", response_model=Balance, tags=["Earnings"])
def get_balance(wallet: str) -> Balance:
    try:
        artist = ledger_service.get_artist_by_wallet(wallet)
        return ledger_service.get_balance(artist.id)
    except EarningsError as e:
        raise to_http(e)


@app.get("/artists/{wallet}/ledger", response_model=LedgerHistoryResponse, tags=["Earnings"])
def get_ledger(wallet: str, limit: int = 50, before: Optional[datetime] = None) -> LedgerHistoryResponse:
    try:
        artist = ledger_service.get_artist_by_wallet(wallet)
        return ledger_service.list_entries(artist.id, limit=limit, before=before)
    except EarningsError as e:
        raise to_http(e)


@app.get("/artists/{wallet}/audit", response_model=AuditReport, tags=["Earnings"])
def audit_artist(wallet: str, repair: bool = False) -> AuditReport:
    try:
        artist = ledger_service.get_artist_by_wallet(wallet)
        return ledger_service.audit(artist.id, repair=repair)
    except EarningsError as e:
        raise to_http(e)


@app.get("/artists/{wallet}/analytics", response_model=ArtistAnalytics, tags=["Analytics"])
def get_artist_analytics(wallet: str, period: int = 30) -> ArtistAnalytics:
    try:
        return analytics_service.artist_analytics(wallet, period)
    except EarningsError as e:
        raise to_http(e)


@app.get("/analytics", response_model=PlatformAnalytics, tags=["Analytics"])
def get_platform_analytics() -> PlatformAnalytics:
    return analytics_service.platform_analytics()


@app.post("/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def create_withdrawal(request: WithdrawRequest) -> WithdrawalResponse:
    try:
        return withdrawal_service.withdraw(request)
    except EarningsError as e:
        raise to_http(e)


@app.get("/artists/{wallet}/withdrawals", response_model=list[LedgerEntry], tags=["Withdrawals"])
def list_withdrawals(wallet: str, limit: int = 20) -> list[LedgerEntry]:
    try:
        return withdrawal_service.list_withdrawals(wallet, limit)
    except EarningsError as e:
        raise to_http(e)


@app.post("/artists/{wallet}/withdrawals/reconcile", response_model=list[ReconcileResponse], tags=["Withdrawals"])
def reconcile_artist_withdrawals(wallet: str) -> list[ReconcileResponse]:
    try:
        return withdrawal_service.reconcile_pending(wallet)
    except EarningsError as e:
        raise to_http(e)


@app.get("/withdrawals/coins", response_model=list[str], tags=["Withdrawals"])
def supported_coins() -> list[str]:
    try:
        return withdrawal_service.supported_coins()
    except EarningsError as e:
        raise to_http(e)


@app.get("/withdrawals/orders/{order_id}", response_model=ExchangeOrder, tags=["Withdrawals"])
def get_withdrawal_status(order_id: str) -> ExchangeOrder:
    try:
        return withdrawal_service.get_withdrawal_status(order_id)
    except EarningsError as e:
        raise to_http(e)


@app.post("/withdrawals/{entry_id}/reconcile", response_model=ReconcileResponse, tags=["Withdrawals"])
def reconcile_withdrawal(entry_id: UUID) -> ReconcileResponse:
    try:
        return withdrawal_service.reconcile_withdrawal(entry_id)
    except EarningsError as e:
        raise to_http(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
