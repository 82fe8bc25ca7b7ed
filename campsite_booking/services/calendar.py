"""
Calendar / inventory index for campsites.

Holds, per site, the date ranges currently held, reserved or blocked and
answers "is site S free for [arrival, departure)?". Ranges are half-open and
two ranges conflict iff a1 < b2 and a2 < b1.

Each site keeps an immutable tuple of entries sorted by arrival, replaced
wholesale on every write. Readers (is_available) take no lock; writers hold a
per-site mutex so check-and-insert is atomic.
"""
import logging
import threading
import uuid
from bisect import bisect_left
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from ..clock import system_clock
from ..models import DomainModel
from ..outcomes import Conflict

logger = logging.getLogger(__name__)


class EntryKind(str, Enum):
    HOLD = "hold"
    RESERVATION = "reservation"
    BLOCK = "block"


class CalendarEntry(DomainModel):
    id: str
    site_id: str
    arrival: date
    departure: date
    kind: EntryKind
    expires_at: Optional[datetime] = None  # wall clock, holds only
    deadline: Optional[float] = None  # monotonic clock, holds only
    reason: Optional[str] = None

    def overlaps(self, arrival: date, departure: date) -> bool:
        return ranges_overlap(self.arrival, self.departure, arrival, departure)

    def is_live(self, monotonic_now: float) -> bool:
        return self.deadline is None or monotonic_now < self.deadline


class _SiteCalendar(NamedTuple):
    entries: Tuple[CalendarEntry, ...]
    starts: Tuple[date, ...]


_EMPTY = _SiteCalendar((), ())


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap test."""
    return a_start < b_end and b_start < a_end


def iter_nights(arrival: date, departure: date) -> Iterable[date]:
    night = arrival
    while night < departure:
        yield night
        night += timedelta(days=1)


class CalendarIndex:
    """In-memory per-site inventory index."""

    def __init__(self, clock=system_clock):
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._site_locks: Dict[str, threading.Lock] = {}
        self._sites: Dict[str, _SiteCalendar] = {}
        self._by_id: Dict[str, CalendarEntry] = {}

    def _lock_for(self, site_id: str) -> threading.Lock:
        lock = self._site_locks.get(site_id)
        if lock is None:
            with self._registry_lock:
                lock = self._site_locks.setdefault(site_id, threading.Lock())
        return lock

    def _install(self, site_id: str, entries: Iterable[CalendarEntry]) -> None:
        ordered = tuple(sorted(entries, key=lambda e: (e.arrival, e.id)))
        self._sites[site_id] = _SiteCalendar(ordered, tuple(e.arrival for e in ordered))

    @staticmethod
    def _find_overlap(
        calendar: _SiteCalendar,
        arrival: date,
        departure: date,
        monotonic_now: float
    ) -> Optional[CalendarEntry]:
        # Stored entries never overlap each other, so departures ascend with
        # arrivals and only the tail of entries starting before `departure`
        # can reach past `arrival`.
        j = bisect_left(calendar.starts, departure) - 1
        while j >= 0 and calendar.entries[j].departure > arrival:
            if calendar.entries[j].is_live(monotonic_now):
                return calendar.entries[j]
            j -= 1
        return None

    def _purge_site(self, site_id: str, monotonic_now: float) -> Tuple[_SiteCalendar, List[CalendarEntry]]:
        """Drop expired holds for one site. Caller must hold the site lock."""
        calendar = self._sites.get(site_id, _EMPTY)
        expired = [e for e in calendar.entries if not e.is_live(monotonic_now)]
        if not expired:
            return calendar, []
        self._install(site_id, (e for e in calendar.entries if e.is_live(monotonic_now)))
        with self._registry_lock:
            for entry in expired:
                self._by_id.pop(entry.id, None)
        return self._sites[site_id], expired

    def is_available(self, site_id: str, arrival: date, departure: date) -> bool:
        """Advisory, unsynchronized availability check."""
        calendar = self._sites.get(site_id, _EMPTY)
        return self._find_overlap(calendar, arrival, departure, self._clock.monotonic()) is None

    def conflicting_entry(self, site_id: str, arrival: date, departure: date) -> Optional[CalendarEntry]:
        calendar = self._sites.get(site_id, _EMPTY)
        return self._find_overlap(calendar, arrival, departure, self._clock.monotonic())

    def reserve(
        self,
        site_id: str,
        arrival: date,
        departure: date,
        kind: EntryKind = EntryKind.HOLD,
        ttl: Optional[timedelta] = None,
        entry_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Union[CalendarEntry, Conflict]:
        """
        Atomically check the range and record a new entry.
        Returns the entry, or Conflict when a live overlapping entry exists.
        """
        if arrival >= departure:
            raise ValueError(f"Empty or inverted range {arrival}..{departure}")
        if kind == EntryKind.HOLD and ttl is None:
            raise ValueError("Holds require a ttl")

        with self._lock_for(site_id):
            monotonic_now = self._clock.monotonic()
            calendar, _ = self._purge_site(site_id, monotonic_now)

            clash = self._find_overlap(calendar, arrival, departure, monotonic_now)
            if clash is not None:
                logger.info(
                    f"Conflict on site {site_id} for {arrival}..{departure}: "
                    f"overlaps {clash.kind.value} {clash.id} ({clash.arrival}..{clash.departure})"
                )
                return Conflict(
                    message=f"Site {site_id} is already taken for part of {arrival}..{departure}",
                    site_id=site_id,
                    arrival=arrival,
                    departure=departure,
                    conflicting_entry_id=clash.id
                )

            entry = CalendarEntry(
                id=entry_id or str(uuid.uuid4()),
                site_id=site_id,
                arrival=arrival,
                departure=departure,
                kind=kind,
                expires_at=self._clock.now() + ttl if ttl is not None else None,
                deadline=monotonic_now + ttl.total_seconds() if ttl is not None else None,
                reason=reason
            )
            self._install(site_id, calendar.entries + (entry,))
            with self._registry_lock:
                self._by_id[entry.id] = entry

        logger.info(f"Recorded {kind.value} {entry.id} on site {site_id} for {arrival}..{departure}")
        return entry

    def block(self, site_id: str, arrival: date, departure: date, reason: str) -> Union[CalendarEntry, Conflict]:
        """Operator maintenance/closure block."""
        return self.reserve(site_id, arrival, departure, kind=EntryKind.BLOCK, reason=reason)

    def load(self, entries: Iterable[CalendarEntry]) -> int:
        """Hydrate from persisted holds/reservations. Overlapping entries are skipped."""
        loaded = 0
        for entry in entries:
            if entry.expires_at is not None:
                # Persisted holds carry wall-clock expiry only; rebase onto this process's monotonic clock
                remaining = (entry.expires_at - self._clock.now()).total_seconds()
                entry = entry.model_copy(update={"deadline": self._clock.monotonic() + remaining})
            with self._lock_for(entry.site_id):
                monotonic_now = self._clock.monotonic()
                if not entry.is_live(monotonic_now):
                    continue
                calendar, _ = self._purge_site(entry.site_id, monotonic_now)
                if self._find_overlap(calendar, entry.arrival, entry.departure, monotonic_now):
                    logger.warning(f"Skipping overlapping persisted entry {entry.id} on site {entry.site_id}")
                    continue
                self._install(entry.site_id, calendar.entries + (entry,))
                with self._registry_lock:
                    self._by_id[entry.id] = entry
                loaded += 1
        return loaded

    def get(self, entry_id: str) -> Optional[CalendarEntry]:
        return self._by_id.get(entry_id)

    def release(self, entry_id: str) -> Optional[CalendarEntry]:
        """Return a hold's or reservation's range to the available pool."""
        entry = self._by_id.get(entry_id)
        if entry is None:
            return None

        with self._lock_for(entry.site_id):
            calendar = self._sites.get(entry.site_id, _EMPTY)
            remaining = tuple(e for e in calendar.entries if e.id != entry_id)
            if len(remaining) == len(calendar.entries):
                return None
            self._install(entry.site_id, remaining)
            with self._registry_lock:
                self._by_id.pop(entry_id, None)

        logger.info(f"Released {entry.kind.value} {entry_id} on site {entry.site_id}")
        return entry

    def confirm(self, entry_id: str) -> Optional[CalendarEntry]:
        """
        Convert a live hold into a permanent reservation entry.
        Returns None if the hold is unknown or already expired.
        """
        entry = self._by_id.get(entry_id)
        if entry is None or entry.kind != EntryKind.HOLD:
            return None

        with self._lock_for(entry.site_id):
            monotonic_now = self._clock.monotonic()
            calendar = self._sites.get(entry.site_id, _EMPTY)
            current = next((e for e in calendar.entries if e.id == entry_id), None)
            if current is None or not current.is_live(monotonic_now):
                return None

            confirmed = current.model_copy(
                update={"kind": EntryKind.RESERVATION, "expires_at": None, "deadline": None}
            )
            self._install(
                entry.site_id,
                tuple(confirmed if e.id == entry_id else e for e in calendar.entries)
            )
            with self._registry_lock:
                self._by_id[entry_id] = confirmed

        return confirmed

    def purge_expired(self) -> List[CalendarEntry]:
        """Release every hold whose TTL has elapsed."""
        expired: List[CalendarEntry] = []
        for site_id in list(self._sites):
            with self._lock_for(site_id):
                _, dropped = self._purge_site(site_id, self._clock.monotonic())
            expired.extend(dropped)

        if expired:
            logger.info(f"Expired {len(expired)} holds")
        return expired

    def entries(self, site_id: str) -> Tuple[CalendarEntry, ...]:
        """Live entries for a site, ordered by arrival."""
        monotonic_now = self._clock.monotonic()
        calendar = self._sites.get(site_id, _EMPTY)
        return tuple(e for e in calendar.entries if e.is_live(monotonic_now))

    def occupancy_pct(self, site_ids: Iterable[str], night: date) -> Decimal:
        """Percentage of the given sites with a live entry covering `night`."""
        site_ids = list(site_ids)
        if not site_ids:
            return Decimal(0)

        next_day = night + timedelta(days=1)
        occupied = sum(1 for site_id in site_ids if not self.is_available(site_id, night, next_day))
        return Decimal(occupied * 100) / Decimal(len(site_ids))
