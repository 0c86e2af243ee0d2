from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional

from .errors import InvalidInputError
from .models import (
    Artist,
    ArtistAnalytics,
    DailyStat,
    EntryKind,
    PlatformAnalytics,
    StreamEvent,
    Track,
)
from .storage import InMemoryStorage

MAX_PERIOD_DAYS = 365
TOP_TRACKS = 10
RECENT_STREAMS = 20


class AnalyticsService:
    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def artist_analytics(self, wallet_address: str, period_days: int = 30) -> ArtistAnalytics:
        if period_days < 1 or period_days > MAX_PERIOD_DAYS:
            raise InvalidInputError(f"period must be between 1 and {MAX_PERIOD_DAYS} days")
        data = self.storage.get_artist_by_wallet(wallet_address)
        if not data:
            return ArtistAnalytics()
        artist = Artist(**data)

        today = datetime.now(timezone.utc).date()
        first_day = today - timedelta(days=period_days - 1)
        start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)

        streams = [
            e for e in self.storage.stream_events_for_artist(artist.id)
            if e["completed"] and e["created_at"] >= start
        ]
        streams.sort(key=lambda e: e["created_at"], reverse=True)
        earnings = [
            e for e in self.storage.entries_for_artist(artist.id)
            if e["kind"] != EntryKind.WITHDRAWAL and e["created_at"] >= start
        ]

        daily = {first_day + timedelta(days=i): [0, Decimal("0")] for i in range(period_days)}
        for s in streams:
            day = s["created_at"].astimezone(timezone.utc).date()
            if day in daily:
                daily[day][0] += 1
        for e in earnings:
            day = e["created_at"].astimezone(timezone.utc).date()
            if day in daily:
                daily[day][1] += e["amount"]

        top_tracks = sorted(self.storage.tracks_for_artist(artist.id), key=lambda t: t["play_count"], reverse=True)

        return ArtistAnalytics(
            total_streams=artist.total_streams,
            total_earnings=artist.total_earnings,
            available_balance=artist.available_balance,
            period_streams=len(streams),
            period_earnings=sum((e["amount"] for e in earnings), Decimal("0")),
            daily_stats=[DailyStat(day=day, streams=count, earnings=amount) for day, (count, amount) in daily.items()],
            top_tracks=[Track(**t) for t in top_tracks[:TOP_TRACKS]],
            recent_streams=[StreamEvent(**s) for s in streams[:RECENT_STREAMS]],
            monthly_listeners=len({s["wallet_address"] for s in streams}),
        )

    def platform_analytics(self) -> PlatformAnalytics:
        return PlatformAnalytics(
            total_streams=sum(1 for e in list(self.storage.stream_events.values()) if e["completed"]),
            total_tracks=len(self.storage.tracks),
            total_artists=len(self.storage.artists),
        )
