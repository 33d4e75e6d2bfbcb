"""Data models for interest groups, events and the published sync state."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class InterestGroup:
    """Selectable interest group, matched against the stored selection by name."""
    name: str
    id: Optional[str] = None
    events_url: Optional[str] = None


@dataclass(frozen=True)
class Location:
    """Geographic coordinate of a venue."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Venue:
    """Place where an event is held."""
    name: str
    location: Optional[Location] = None


SENTINEL_IDS = frozenset({'loading', 'empty', 'error'})


@dataclass(frozen=True)
class Event:
    """Event belonging to an interest group."""
    id: str
    group_id: Optional[str]
    name: str
    image_url: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    venue: Optional[Venue] = None

    @property
    def is_sentinel(self) -> bool:
        """True for the loading/empty/error presentation markers."""
        return self.group_id is None and self.id in SENTINEL_IDS


LOADING_EVENT = Event(id='loading', group_id=None, name='Loading')
EMPTY_EVENT = Event(id='empty', group_id=None, name='No events')
ERROR_EVENT = Event(id='error', group_id=None, name='Events unavailable')


class LoadState(Enum):
    LOADING = 'loading'
    READY = 'ready'
    FAILED = 'failed'


@dataclass(frozen=True)
class LoadStatus:
    """Load state of the current cycle; ``error`` is set only when failed."""
    state: LoadState
    error: Optional[BaseException] = None

    @classmethod
    def loading(cls) -> 'LoadStatus':
        return cls(LoadState.LOADING)

    @classmethod
    def ready(cls) -> 'LoadStatus':
        return cls(LoadState.READY)

    @classmethod
    def failed(cls, error: BaseException) -> 'LoadStatus':
        return cls(LoadState.FAILED, error)

    @property
    def is_failed(self) -> bool:
        return self.state is LoadState.FAILED


@dataclass(frozen=True)
class SyncState:
    """Immutable snapshot of the view state published by the controller."""
    selected_group: Optional[InterestGroup] = None
    groups: Tuple[InterestGroup, ...] = ()
    events: Tuple[Event, ...] = ()
    first_event: Event = LOADING_EVENT
    upcoming_events: Tuple[Event, ...] = ()
    past_events: Tuple[Event, ...] = ()
    status: LoadStatus = field(default_factory=LoadStatus.loading)

    def evolve(self, **changes) -> 'SyncState':
        """Return a copy of this snapshot with the given fields replaced."""
        return replace(self, **changes)
