import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID, uuid4


class UnitOfWork:
    """Writes staged while an artist's lock is held, applied together on commit."""

    def __init__(self, artist_id: UUID):
        self.artist_id = artist_id
        self.artists: dict[UUID, dict] = {}
        self.tracks: dict[UUID, dict] = {}
        self.ledger_entries: list[dict] = []
        self.stream_events: list[dict] = []
        self.entry_updates: dict[UUID, dict] = {}
        self.consumed_sessions: dict[str, datetime] = {}

    def save_artist(self, data: dict) -> None:
        self.artists[data["id"]] = data

    def save_track(self, data: dict) -> None:
        self.tracks[data["id"]] = data

    def add_ledger_entry(self, data: dict) -> None:
        self.ledger_entries.append(data)

    def add_stream_event(self, data: dict) -> None:
        self.stream_events.append(data)

    def update_entry(self, entry_id: UUID, **changes) -> None:
        self.entry_updates.setdefault(entry_id, {}).update(changes)

    def consume_session(self, token: str, consumed_at: datetime) -> None:
        self.consumed_sessions[token] = consumed_at


class InMemoryStorage:
    def __init__(self, seed: bool = True):
        self.artists: dict[UUID, dict] = {}
        self.tracks: dict[UUID, dict] = {}
        self.listeners: dict[UUID, dict] = {}
        self.ledger_entries: dict[UUID, dict] = {}
        self.stream_events: dict[UUID, dict] = {}
        self.playback_sessions: dict[str, dict] = {}
        self.wallet_index: dict[str, UUID] = {}
        self.listener_index: dict[str, UUID] = {}
        self.reservations: dict[UUID, Decimal] = {}

        self._locks: dict[UUID, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._clock_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

        if seed:
            self._seed_data()

    def _seed_data(self):
        artist1 = self.create_artist(
            "0xab5801a7d398351b8be11c439e05c5b3259aec9b", "Luna Vale",
            artist_id=UUID("aaaaaaaa-0000-4000-8000-000000000001"),
        )
        artist2 = self.create_artist(
            "0x4e83362442b8d1bec281594cea3050c8eb01311c", "The Static Hours",
            price_per_stream=Decimal("0.002"),
            artist_id=UUID("aaaaaaaa-0000-4000-8000-000000000002"),
        )
        self.create_track(artist1["id"], "Night Ferry", track_id=UUID("bbbbbbbb-0000-4000-8000-000000000001"))
        self.create_track(artist1["id"], "Paper Moons", track_id=UUID("bbbbbbbb-0000-4000-8000-000000000002"))
        self.create_track(artist2["id"], "Signal Loss", track_id=UUID("bbbbbbbb-0000-4000-8000-000000000003"))
        self.create_listener(
            "0x8ba1f109551bd432803012645ac136ddd64dba72",
            listener_id=UUID("cccccccc-0000-4000-8000-000000000001"),
        )

    def now(self) -> datetime:
        """Current UTC time, strictly increasing across calls on this storage."""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + timedelta(microseconds=1)
            self._last_timestamp = now
            return now

    # Registration (artist onboarding and uploads live elsewhere)

    def create_artist(
        self,
        wallet_address: str,
        artist_name: str,
        price_per_stream: Decimal = Decimal("0.001"),
        artist_id: Optional[UUID] = None,
    ) -> dict:
        wallet = wallet_address.lower()
        with self._registry_lock:
            if wallet in self.wallet_index:
                raise ValueError(f"Artist profile already exists for {wallet}")
            artist_id = artist_id or uuid4()
            data = {
                "id": artist_id,
                "wallet_address": wallet,
                "artist_name": artist_name,
                "price_per_stream": price_per_stream,
                "total_streams": 0,
                "total_earnings": Decimal("0"),
                "withdrawn_amount": Decimal("0"),
                "version": 0,
                "created_at": self.now(),
            }
            self.artists[artist_id] = data
            self.wallet_index[wallet] = artist_id
            return dict(data)

    def create_track(self, artist_id: UUID, title: str, track_id: Optional[UUID] = None) -> dict:
        if artist_id not in self.artists:
            raise ValueError(f"Artist {artist_id} not found")
        track_id = track_id or uuid4()
        data = {
            "id": track_id,
            "artist_id": artist_id,
            "title": title,
            "play_count": 0,
            "created_at": self.now(),
        }
        self.tracks[track_id] = data
        return dict(data)

    def create_listener(self, wallet_address: str, listener_id: Optional[UUID] = None) -> dict:
        wallet = wallet_address.lower()
        listener_id = listener_id or uuid4()
        data = {"id": listener_id, "wallet_address": wallet, "created_at": self.now()}
        with self._registry_lock:
            self.listeners[listener_id] = data
            self.listener_index[wallet] = listener_id
        return dict(data)

    # Reads return copies so callers cannot mutate stored records in place

    def get_artist(self, artist_id: UUID) -> Optional[dict]:
        data = self.artists.get(artist_id)
        return dict(data) if data else None

    def get_artist_by_wallet(self, wallet_address: str) -> Optional[dict]:
        artist_id = self.wallet_index.get(wallet_address.lower())
        return self.get_artist(artist_id) if artist_id else None

    def get_track(self, track_id: UUID) -> Optional[dict]:
        data = self.tracks.get(track_id)
        return dict(data) if data else None

    def find_listener_id(self, wallet_address: str) -> Optional[UUID]:
        return self.listener_index.get(wallet_address.lower())

    def get_ledger_entry(self, entry_id: UUID) -> Optional[dict]:
        data = self.ledger_entries.get(entry_id)
        return dict(data) if data else None

    def entries_for_artist(self, artist_id: UUID) -> list[dict]:
        return [dict(e) for e in list(self.ledger_entries.values()) if e["artist_id"] == artist_id]

    def stream_events_for_artist(self, artist_id: UUID) -> list[dict]:
        return [dict(e) for e in list(self.stream_events.values()) if e["artist_id"] == artist_id]

    def tracks_for_artist(self, artist_id: UUID) -> list[dict]:
        return [dict(t) for t in list(self.tracks.values()) if t["artist_id"] == artist_id]

    # Playback sessions

    def save_playback_session(self, data: dict) -> None:
        """Store a new session and drop expired ones.

        Consumed sessions are kept until they expire so a replayed token is
        still recognised as a duplicate.
        """
        now = self.now()
        with self._registry_lock:
            expired = [t for t, s in self.playback_sessions.items() if s["expires_at"] < now]
            for token in expired:
                del self.playback_sessions[token]
            self.playback_sessions[data["token"]] = data

    def get_playback_session(self, token: str) -> Optional[dict]:
        data = self.playback_sessions.get(token)
        return dict(data) if data else None

    # Per-artist serialization

    def _lock_for(self, artist_id: UUID) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(artist_id)
            if lock is None:
                lock = self._locks[artist_id] = threading.Lock()
            return lock

    @contextmanager
    def artist_transaction(self, artist_id: UUID) -> Iterator[UnitOfWork]:
        """Serialize balance-affecting work for one artist.

        Staged writes are applied only if the block exits cleanly; an exception
        discards all of them.
        """
        with self._lock_for(artist_id):
            uow = UnitOfWork(artist_id)
            yield uow
            self.commit(uow)

    def commit(self, uow: UnitOfWork) -> None:
        for artist_id, data in uow.artists.items():
            current = self.artists[artist_id]
            if data["version"] != current["version"]:
                raise RuntimeError(f"Artist {artist_id} was modified outside its transaction")
        for artist_id, data in uow.artists.items():
            self.artists[artist_id] = {**data, "version": data["version"] + 1}
        for track_id, data in uow.tracks.items():
            self.tracks[track_id] = data
        for entry_id, changes in uow.entry_updates.items():
            self.ledger_entries[entry_id] = {**self.ledger_entries[entry_id], **changes}
        for entry in uow.ledger_entries:
            self.ledger_entries[entry["id"]] = entry
        for event in uow.stream_events:
            self.stream_events[event["id"]] = event
        with self._registry_lock:
            for token, consumed_at in uow.consumed_sessions.items():
                session = self.playback_sessions.get(token)
                if session is not None:
                    self.playback_sessions[token] = {**session, "consumed_at": consumed_at}

    # Withdrawal holds

    def reserved_amount(self, artist_id: UUID) -> Decimal:
        return self.reservations.get(artist_id, Decimal("0"))

    def reserve(self, artist_id: UUID, amount: Decimal) -> None:
        """Caller must hold the artist's transaction."""
        self.reservations[artist_id] = self.reserved_amount(artist_id) + amount

    def release(self, artist_id: UUID, amount: Decimal) -> None:
        with self._lock_for(artist_id):
            remaining = self.reserved_amount(artist_id) - amount
            if remaining > 0:
                self.reservations[artist_id] = remaining
            else:
                self.reservations.pop(artist_id, None)
