"""Turns playback reports into artist earnings.

A report qualifies when the listener finished the play and listened for at
least ``QUALIFYING_DURATION_SECONDS``. Qualifying reports pay the artist's flat
``price_per_stream``; every report, qualifying or not, is kept as a
``StreamEvent`` for analytics.
"""

import logging
import secrets
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from .config import Settings, get_settings
from .errors import DuplicateStreamError, InvalidInputError, NotFoundError
from .models import (
    Artist,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    PlaybackSessionResponse,
    StartPlaybackRequest,
    StreamEvent,
    StreamReportRequest,
    StreamResult,
    TipRequest,
)
from .service import new_entry
from .storage import InMemoryStorage, UnitOfWork

logger = logging.getLogger(__name__)

QUALIFYING_DURATION_SECONDS = 30


def is_qualifying(duration_seconds: float, completed: bool) -> bool:
    return completed is True and duration_seconds >= QUALIFYING_DURATION_SECONDS


class SettlementService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()

    def start_playback(self, request: StartPlaybackRequest) -> PlaybackSessionResponse:
        if not request.wallet_address:
            raise InvalidInputError("Wallet address required")
        if not self.storage.get_track(request.track_id):
            raise NotFoundError(f"Track {request.track_id} not found")

        now = self.storage.now()
        session = {
            "token": secrets.token_urlsafe(24),
            "track_id": request.track_id,
            "wallet_address": request.wallet_address,
            "issued_at": now,
            "expires_at": now + timedelta(seconds=self.settings.PLAYBACK_SESSION_TTL_SECONDS),
            "consumed_at": None,
        }
        self.storage.save_playback_session(session)
        return PlaybackSessionResponse(
            token=session["token"], track_id=request.track_id, expires_at=session["expires_at"],
        )

    def record_stream(self, request: StreamReportRequest) -> StreamResult:
        if not request.wallet_address:
            raise InvalidInputError("Wallet address required")
        if self.settings.REQUIRE_PLAYBACK_SESSION and not request.session_token:
            raise InvalidInputError("A playback session token is required")

        track = self.storage.get_track(request.track_id)
        if not track:
            raise NotFoundError(f"Track {request.track_id} not found")
        artist_id = track["artist_id"]

        with self.storage.artist_transaction(artist_id) as uow:
            artist_data = self.storage.get_artist(artist_id)
            if not artist_data:
                raise NotFoundError(f"Artist {artist_id} not found")
            artist = Artist(**artist_data)
            # Re-read under the lock so concurrent plays see each other's counts
            track = self.storage.get_track(request.track_id)
            now = self.storage.now()

            if request.session_token:
                self._consume_session(uow, request, now)

            earned = Decimal("0")
            entry = None
            if is_qualifying(request.duration_seconds, request.completed):
                earned = artist.price_per_stream
                track["play_count"] += 1
                uow.save_track(track)
                uow.save_artist({
                    **artist_data,
                    "total_streams": artist.total_streams + 1,
                    "total_earnings": artist.total_earnings + earned,
                })
                entry = new_entry(
                    artist_id, earned, EntryKind.STREAM, EntryStatus.COMPLETED, now, track_id=track["id"],
                )
                uow.add_ledger_entry(entry)

            event = {
                "id": uuid4(),
                "track_id": track["id"],
                "artist_id": artist_id,
                "listener_id": self.storage.find_listener_id(request.wallet_address),
                "wallet_address": request.wallet_address,
                "duration_seconds": request.duration_seconds,
                "completed": request.completed,
                "earned_amount": earned,
                "created_at": now,
            }
            uow.add_stream_event(event)

        if entry:
            logger.info("Settled stream of track %s for artist %s: %s", track["id"], artist_id, earned)
        return StreamResult(
            play_count=track["play_count"],
            earned_amount=earned,
            stream_event=StreamEvent(**event),
            ledger_entry=LedgerEntry(**entry) if entry else None,
        )

    def _consume_session(self, uow: UnitOfWork, request: StreamReportRequest, now) -> None:
        session = self.storage.get_playback_session(request.session_token)
        if (
            not session
            or session["track_id"] != request.track_id
            or session["wallet_address"] != request.wallet_address
        ):
            raise InvalidInputError("Unknown playback session")
        if session["consumed_at"] is not None:
            raise DuplicateStreamError(f"Playback session already reported at {session['consumed_at'].isoformat()}")
        if session["expires_at"] < now:
            raise InvalidInputError("Playback session expired")
        uow.consume_session(request.session_token, now)

    def record_tip(self, request: TipRequest) -> LedgerEntry:
        if not request.wallet_address:
            raise InvalidInputError("Wallet address required")
        if request.amount <= 0:
            raise InvalidInputError("Tip amount must be positive")
        artist_data = self.storage.get_artist_by_wallet(request.wallet_address)
        if not artist_data:
            raise NotFoundError(f"Artist {request.wallet_address} not found")
        artist_id = artist_data["id"]

        with self.storage.artist_transaction(artist_id) as uow:
            artist_data = self.storage.get_artist(artist_id)
            now = self.storage.now()
            uow.save_artist({**artist_data, "total_earnings": artist_data["total_earnings"] + request.amount})
            entry = new_entry(
                artist_id, request.amount, EntryKind.TIP, EntryStatus.COMPLETED, now, note=request.note,
            )
            uow.add_ledger_entry(entry)

        logger.info("Recorded tip of %s for artist %s", request.amount, artist_id)
        return LedgerEntry(**entry)
