"""Sync controller keeping the published view state in step with the remote source."""
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set

from fetcher.errors import FetchError, InvalidLocatorError, SyncError, UnknownSyncError
from fetcher.remote_fetcher import RemoteFetcher, has_usable_locator
from processor.event_processor import EventPartitioner, utc_now
from processor.models import (
    EMPTY_EVENT,
    ERROR_EVENT,
    LOADING_EVENT,
    Event,
    InterestGroup,
    LoadStatus,
    SyncState,
)
from storage.preferences import MostRecentEventCache, SelectionStore
from sync.debounce import Debouncer

logger = logging.getLogger(__name__)

StateCallback = Callable[[SyncState], None]


class SyncController:
    """
    Owns the SyncState aggregate and drives group and event loading.

    Network calls run on a worker pool. Every state change is applied under
    a lock and published to subscribers as one immutable snapshot. Loads are
    tagged with a generation number so that only the most recently started
    load of each resource can change the state.
    """

    DEBOUNCE_SECONDS = 0.2

    def __init__(
        self,
        fetcher: RemoteFetcher,
        selection_store: SelectionStore,
        most_recent_cache: MostRecentEventCache,
        partitioner: Optional[EventPartitioner] = None,
        clock: Callable[[], datetime] = utc_now,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        executor: Optional[Executor] = None
    ):
        """
        Initialize the controller.

        Args:
            fetcher: Remote fetcher for groups and events
            selection_store: Store holding the selected group name
            most_recent_cache: Receives the first event of each non-empty fetch
            partitioner: Event partitioner (default: EventPartitioner())
            clock: Source of the current instant
            debounce_seconds: Quiet period before a selection change applies
            executor: Worker pool for network calls (default: private pool)
        """
        self._fetcher = fetcher
        self._selection_store = selection_store
        self._most_recent_cache = most_recent_cache
        self._partitioner = partitioner or EventPartitioner()
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix='sync'
        )

        self._lock = threading.RLock()
        self._state = SyncState()
        self._subscribers: List[StateCallback] = []
        self._futures: Set[Future] = set()
        self._group_generation = 0
        self._event_generation = 0
        self._selected_name: Optional[str] = None
        self._unsubscribe_selection: Optional[Callable[[], None]] = None
        self._debouncer = Debouncer(debounce_seconds, self._apply_selection)
        self._closed = False

    @property
    def state(self) -> SyncState:
        """Current snapshot of the view state."""
        with self._lock:
            return self._state

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register a state observer.

        The callback receives the current snapshot immediately and then
        every new snapshot, in order.

        Args:
            callback: Called with each SyncState

        Returns:
            Function that removes the registration
        """
        with self._lock:
            self._subscribers.append(callback)
            self._notify(callback, self._state)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # Groups

    def load_groups(self) -> Optional[Future]:
        """
        Start a groups fetch.

        On success the group list is replaced and the stored selection is
        resolved against it. On failure the previous groups stay in place.

        Returns:
            Future completing once the result has been applied, or None if
            the controller is closed
        """
        with self._lock:
            if self._closed:
                self._fail_closed('load_groups')
                return None
            self._group_generation += 1
            generation = self._group_generation
            self._update(status=LoadStatus.loading())

        logger.info("Loading all groups")
        return self._submit(self._run_group_fetch, generation)

    def _run_group_fetch(self, generation: int) -> SyncState:
        try:
            groups = self._fetcher.fetch_groups()
        except Exception as e:
            return self._finish_group_failure(generation, _as_sync_error(e))

        with self._lock:
            if generation != self._group_generation:
                logger.debug(f"Discarding stale groups result (generation {generation})")
                return self._state

            changes = {'groups': tuple(groups), 'status': LoadStatus.ready()}
            selected = _match_group(self._selected_name, groups)
            if selected is not None:
                changes['selected_group'] = selected
            self._update(**changes)
            logger.info(f"Group fetch complete: {len(groups)} groups")
            return self._state

    def _finish_group_failure(self, generation: int, error: SyncError) -> SyncState:
        with self._lock:
            if generation != self._group_generation:
                return self._state
            logger.critical(f"Network error while loading groups: {error}")
            self._update(status=LoadStatus.failed(error))
            return self._state

    # Events

    def load_events(self, group: InterestGroup) -> Optional[Future]:
        """
        Start an events fetch for a group.

        A group without a usable events URL fails immediately without a
        network call and without touching the event fields.

        Args:
            group: Group whose events are loaded

        Returns:
            Future completing once the result has been applied, or None if
            no request was issued
        """
        with self._lock:
            if self._closed:
                self._fail_closed('load_events')
                return None
            self._event_generation += 1
            generation = self._event_generation

            if not has_usable_locator(group):
                error = InvalidLocatorError(f"Invalid events URL for group '{group.name}'")
                logger.critical(f"Cannot load events: {error}")
                self._update(status=LoadStatus.failed(error))
                return None

            self._update(status=LoadStatus.loading())

        logger.info(f"Loading events for group '{group.name}'")
        return self._submit(self._run_event_fetch, group, generation)

    def _run_event_fetch(self, group: InterestGroup, generation: int) -> SyncState:
        # Fetch events off the state lock
        try:
            events = self._fetcher.fetch_events(group)
        except Exception as e:
            return self._finish_event_failure(generation, _as_sync_error(e))

        now = self._clock()
        with self._lock:
            # Drop results superseded by a newer load or cancel_all()
            if generation != self._event_generation:
                logger.debug(f"Discarding stale events result (generation {generation})")
                return self._state

            # Partition against the instant captured for this cycle
            first_event = events[0] if events else EMPTY_EVENT
            upcoming, past = self._partitioner.partition(events, now)
            self._update(
                first_event=first_event,
                events=tuple(events),
                upcoming_events=tuple(upcoming),
                past_events=tuple(past),
                status=LoadStatus.ready()
            )
            logger.info(f"Events fetch complete: {len(events)} events loaded")

            # Store the most recent event while this cycle is still current
            if events:
                self._save_most_recent(events[0])
            return self._state

    def _finish_event_failure(self, generation: int, error: SyncError) -> SyncState:
        now = self._clock()
        with self._lock:
            if generation != self._event_generation:
                return self._state

            logger.critical(f"Network error while loading events: {error}")
            failed_events = (ERROR_EVENT,)
            upcoming, past = self._partitioner.partition(failed_events, now)
            self._update(
                events=failed_events,
                upcoming_events=tuple(upcoming),
                past_events=tuple(past),
                status=LoadStatus.failed(error)
            )
            return self._state

    def _save_most_recent(self, event: Event) -> None:
        try:
            self._most_recent_cache.save_most_recent(event)
        except Exception:
            logger.exception(f"Failed to store most recent event {event.id}")

    # Selection

    def observe_selection(self) -> None:
        """
        Follow the selection store.

        The stored value is resolved right away; later changes are
        debounced and resolved by exact name against the loaded groups. A
        name with no matching group leaves the current selection as it is.
        """
        with self._lock:
            if self._unsubscribe_selection is not None:
                return
            self._unsubscribe_selection = self._selection_store.subscribe(
                self._debouncer.trigger
            )

        # Resolve the stored value right away
        initial = self._selection_store.load_selection()
        if initial is not None:
            self._apply_selection(initial)

    def _apply_selection(self, name: Optional[str]) -> None:
        with self._lock:
            if self._unsubscribe_selection is None:
                return
            self._selected_name = name
            group = _match_group(name, self._state.groups)
            if group is None:
                logger.info(f"No loaded group named '{name}'; keeping current selection")
                return
            logger.debug(f"Selected group '{group.name}'")
            self._update(selected_group=group)

    # Teardown

    def cancel_all(self) -> None:
        """
        Abandon all pending work and reset the event fields.

        Results of loads already in flight are discarded when they arrive.
        The status is forced to ready; this never publishes a failure.
        """
        with self._lock:
            # Invalidate in-flight loads and pending selection changes
            self._group_generation += 1
            self._event_generation += 1
            self._debouncer.cancel()
            if self._unsubscribe_selection is not None:
                self._unsubscribe_selection()
                self._unsubscribe_selection = None
            # Pending futures that have not started yet never run
            for future in list(self._futures):
                future.cancel()

            # Reset event fields without publishing a failure
            self._update(
                first_event=LOADING_EVENT,
                events=(),
                upcoming_events=(),
                past_events=(),
                status=LoadStatus.ready()
            )
        logger.info("Cancelled all sync operations")

    def close(self) -> None:
        """Cancel everything and release the worker pool."""
        self.cancel_all()
        with self._lock:
            self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # Internals

    def _submit(self, fn: Callable, *args) -> Optional[Future]:
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            logger.critical(f"Worker pool unavailable: {e}")
            with self._lock:
                self._update(status=LoadStatus.failed(
                    UnknownSyncError('Worker pool is shut down', cause=e)
                ))
            return None

        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget_future)
        return future

    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _fail_closed(self, operation: str) -> None:
        logger.error(f"{operation}() called on a closed controller")
        self._update(status=LoadStatus.failed(UnknownSyncError('Controller is closed')))

    def _update(self, **changes) -> None:
        """Apply changes and publish the new snapshot. Caller holds the lock."""
        new_state = self._state.evolve(**changes)
        if new_state == self._state:
            return
        self._state = new_state
        for callback in list(self._subscribers):
            self._notify(callback, new_state)

    def _notify(self, callback: StateCallback, state: SyncState) -> None:
        try:
            callback(state)
        except Exception:
            logger.exception("State subscriber raised")


def _match_group(
    name: Optional[str],
    groups: Iterable[InterestGroup]
) -> Optional[InterestGroup]:
    if name is None:
        return None
    return next((group for group in groups if group.name == name), None)


def _as_sync_error(error: Exception) -> SyncError:
    if isinstance(error, FetchError):
        return error
    logger.error(f"Unexpected error during fetch: {error}", exc_info=error)
    return UnknownSyncError(f"Unexpected error: {error}", cause=error)
