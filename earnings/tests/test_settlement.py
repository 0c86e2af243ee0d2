"""
Unit Tests for Stream Settlement

Tests cover:
1. Qualification threshold
2. Counter and ledger updates on qualifying streams
3. Stream events for every report
4. Playback session tokens (duplicate protection)
5. Concurrent settlement for one artist
6. Tips
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from earnings.config import Settings
from earnings.errors import DuplicateStreamError, InvalidInputError, NotFoundError
from earnings.models import EntryKind, EntryStatus, StartPlaybackRequest, StreamReportRequest, TipRequest
from earnings.settlement import SettlementService

from conftest import ARTIST_WALLET, LISTENER_WALLET, assert_balance_matches_ledger


def report(track, duration=45, completed=True, wallet=LISTENER_WALLET, token=None):
    return StreamReportRequest(
        track_id=track["id"], wallet_address=wallet,
        duration_seconds=duration, completed=completed, session_token=token,
    )


class TestQualification:
    """Tests for the 30 second completed-play rule."""

    def test_thirty_seconds_completed_earns_price(self, settlement, track, ledger, artist):
        result = settlement.record_stream(report(track, duration=30))

        assert result.earned_amount == Decimal("0.001")
        assert result.play_count == 1
        assert result.ledger_entry.kind == EntryKind.STREAM
        assert result.ledger_entry.status == EntryStatus.COMPLETED
        assert result.ledger_entry.track_id == track["id"]

        balance = ledger.get_balance(artist["id"])
        assert balance.total_earnings == Decimal("0.001")
        assert balance.available_balance == Decimal("0.001")

    @pytest.mark.parametrize("completed", [True, False])
    def test_twenty_nine_seconds_earns_nothing(self, settlement, track, completed):
        result = settlement.record_stream(report(track, duration=29, completed=completed))

        assert result.earned_amount == Decimal("0")
        assert result.ledger_entry is None

    def test_incomplete_long_play_earns_nothing(self, settlement, storage, track, artist):
        result = settlement.record_stream(report(track, duration=600, completed=False))

        assert result.earned_amount == Decimal("0")
        assert result.play_count == 0
        stored = storage.get_artist(artist["id"])
        assert stored["total_streams"] == 0
        assert stored["total_earnings"] == Decimal("0")
        assert storage.entries_for_artist(artist["id"]) == []

    def test_rate_is_flat_not_duration_weighted(self, settlement, track):
        short = settlement.record_stream(report(track, duration=31))
        long = settlement.record_stream(report(track, duration=3600))

        assert short.earned_amount == long.earned_amount == Decimal("0.001")
        assert long.play_count == 2

    def test_uses_artist_price(self, storage, settlement):
        artist = storage.create_artist("0x00000000219ab540356cbb839cbe05303d7705fa", "Halden", Decimal("0.004"))
        track = storage.create_track(artist["id"], "Salt Roads")

        result = settlement.record_stream(report(track))

        assert result.earned_amount == Decimal("0.004")
        assert storage.get_artist(artist["id"])["total_streams"] == 1


class TestStreamEvents:
    """Every report is kept for analytics, qualifying or not."""

    def test_event_recorded_for_non_qualifying(self, settlement, storage, track, artist):
        result = settlement.record_stream(report(track, duration=10))

        events = storage.stream_events_for_artist(artist["id"])
        assert len(events) == 1
        assert events[0]["earned_amount"] == Decimal("0")
        assert events[0]["completed"] is True
        assert result.stream_event.duration_seconds == 10

    def test_wallet_is_lowercased_and_listener_resolved(self, settlement, storage, track):
        listener = storage.create_listener(LISTENER_WALLET)

        result = settlement.record_stream(report(track, wallet=LISTENER_WALLET.upper().replace("0X", "0x")))

        assert result.stream_event.wallet_address == LISTENER_WALLET
        assert result.stream_event.listener_id == listener["id"]

    def test_unregistered_listener_still_settles(self, settlement, track):
        result = settlement.record_stream(report(track, wallet="0x1111111111111111111111111111111111111111"))

        assert result.earned_amount == Decimal("0.001")
        assert result.stream_event.listener_id is None


class TestValidation:
    def test_missing_wallet(self, settlement, track):
        with pytest.raises(InvalidInputError):
            settlement.record_stream(report(track, wallet=None))

    def test_blank_wallet(self, settlement, track):
        with pytest.raises(InvalidInputError):
            settlement.record_stream(report(track, wallet="   "))

    @pytest.mark.parametrize("duration", [-1, float("inf"), float("nan")])
    def test_duration_must_be_finite_and_non_negative(self, track, duration):
        with pytest.raises(ValidationError):
            report(track, duration=duration)

    def test_unknown_track(self, settlement):
        with pytest.raises(NotFoundError):
            settlement.record_stream(report({"id": uuid4()}))

    def test_unknown_artist(self, settlement, storage, track, artist):
        del storage.artists[artist["id"]]

        with pytest.raises(NotFoundError):
            settlement.record_stream(report(track))
        assert storage.stream_events == {}


class TestPlaybackSessions:
    """Tests for one-time playback session tokens."""

    def test_token_can_be_used_once(self, settlement, storage, track, artist):
        session = settlement.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))

        first = settlement.record_stream(report(track, token=session.token))
        with pytest.raises(DuplicateStreamError):
            settlement.record_stream(report(track, token=session.token))

        assert first.earned_amount == Decimal("0.001")
        assert storage.get_artist(artist["id"])["total_earnings"] == Decimal("0.001")
        assert len(storage.stream_events_for_artist(artist["id"])) == 1

    def test_token_bound_to_track_and_wallet(self, settlement, storage, track, artist):
        other = storage.create_track(artist["id"], "Second Light")
        session = settlement.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))

        with pytest.raises(InvalidInputError):
            settlement.record_stream(report(other, token=session.token))
        with pytest.raises(InvalidInputError):
            settlement.record_stream(report(track, wallet="0x2222222222222222222222222222222222222222", token=session.token))

        # The rejected attempts did not consume the token
        assert settlement.record_stream(report(track, token=session.token)).earned_amount == Decimal("0.001")

    def test_expired_token(self, storage, track):
        service = SettlementService(storage, Settings(_env_file=None, PLAYBACK_SESSION_TTL_SECONDS=-1))
        session = service.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))

        with pytest.raises(InvalidInputError):
            service.record_stream(report(track, token=session.token))

    def test_expired_sessions_are_dropped(self, settlement, storage, track):
        stale = SettlementService(storage, Settings(_env_file=None, PLAYBACK_SESSION_TTL_SECONDS=-1))
        old = stale.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))
        used = settlement.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))
        settlement.record_stream(report(track, token=used.token))

        fresh = settlement.start_playback(StartPlaybackRequest(track_id=track["id"], wallet_address=LISTENER_WALLET))

        assert old.token not in storage.playback_sessions
        assert set(storage.playback_sessions) == {used.token, fresh.token}
        with pytest.raises(DuplicateStreamError):
            settlement.record_stream(report(track, token=used.token))

    def test_required_session(self, storage, track):
        service = SettlementService(storage, Settings(_env_file=None, REQUIRE_PLAYBACK_SESSION=True))

        with pytest.raises(InvalidInputError):
            service.record_stream(report(track))

    def test_start_playback_unknown_track(self, settlement):
        with pytest.raises(NotFoundError):
            settlement.start_playback(StartPlaybackRequest(track_id=uuid4(), wallet_address=LISTENER_WALLET))


class TestConcurrentSettlement:
    def test_two_concurrent_streams_no_lost_update(self, settlement, storage, track, artist):
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: settlement.record_stream(report(track)), range(2)))

        assert all(r.earned_amount == Decimal("0.001") for r in results)
        assert storage.get_artist(artist["id"])["total_earnings"] == Decimal("0.002")

    def test_many_concurrent_streams(self, settlement, storage, track, artist):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: settlement.record_stream(report(track)), range(200)))

        stored = storage.get_artist(artist["id"])
        assert stored["total_streams"] == 200
        assert stored["total_earnings"] == Decimal("0.200")
        assert storage.get_track(track["id"])["play_count"] == 200
        assert len(storage.entries_for_artist(artist["id"])) == 200
        assert_balance_matches_ledger(storage, artist["id"])


class TestTips:
    def test_tip_credits_balance(self, settlement, ledger, artist):
        entry = settlement.record_tip(TipRequest(wallet_address=ARTIST_WALLET, amount=Decimal("2.50"), note="great set"))

        assert entry.kind == EntryKind.TIP
        assert entry.note == "great set"
        balance = ledger.get_balance(artist["id"])
        assert balance.total_earnings == Decimal("2.50")
        assert balance.available_balance == Decimal("2.50")

    def test_tip_does_not_count_as_stream(self, settlement, storage, artist):
        settlement.record_tip(TipRequest(wallet_address=ARTIST_WALLET, amount=Decimal("1")))

        assert storage.get_artist(artist["id"])["total_streams"] == 0

    @pytest.mark.parametrize("amount", ["0", "-3"])
    def test_tip_must_be_positive(self, settlement, artist, amount):
        with pytest.raises(InvalidInputError):
            settlement.record_tip(TipRequest(wallet_address=ARTIST_WALLET, amount=Decimal(amount)))

    def test_tip_unknown_artist(self, settlement):
        with pytest.raises(NotFoundError):
            settlement.record_tip(TipRequest(wallet_address="0x9999999999999999999999999999999999999999", amount=Decimal("1")))
