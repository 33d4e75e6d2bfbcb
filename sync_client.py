"""Entry point wiring the sync controller from environment configuration."""
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fetcher.remote_fetcher import RemoteFetcher
from processor.models import InterestGroup
from storage.preferences import InMemoryPreferences
from sync.controller import SyncController


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class SyncConfig:
    """Runtime settings read from environment variables."""
    groups_url: str = 'http://localhost:8080/api/groups'
    log_level: str = 'INFO'
    timeout_seconds: float = 30
    retry_backoff_seconds: float = 0
    debounce_seconds: float = SyncController.DEBOUNCE_SECONDS
    group_name: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        return cls(
            groups_url=os.environ.get('GROUPS_URL', cls.groups_url),
            log_level=os.environ.get('LOG_LEVEL', cls.log_level),
            timeout_seconds=float(os.environ.get('TIMEOUT_SECONDS', '30')),
            retry_backoff_seconds=float(os.environ.get('RETRY_BACKOFF_SECONDS', '0')),
            debounce_seconds=float(
                os.environ.get('DEBOUNCE_SECONDS', str(cls.debounce_seconds))
            ),
            group_name=os.environ.get('GROUP_NAME') or None
        )


def create_controller(
    config: SyncConfig,
    preferences: Optional[InMemoryPreferences] = None
) -> SyncController:
    """
    Build a SyncController for the given configuration.

    Args:
        config: Runtime settings
        preferences: Persistence collaborator (default: empty in-memory store)

    Returns:
        Controller that is not yet observing the selection store
    """
    preferences = preferences or InMemoryPreferences()
    fetcher = RemoteFetcher(
        groups_url=config.groups_url,
        timeout=config.timeout_seconds,
        backoff_seconds=config.retry_backoff_seconds
    )
    return SyncController(
        fetcher=fetcher,
        selection_store=preferences,
        most_recent_cache=preferences,
        debounce_seconds=config.debounce_seconds
    )


def sync_handler(group_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Run one full sync cycle: groups, selection, then events.

    Args:
        group_name: Group to load events for; falls back to GROUP_NAME.
            The first fetched group is used only when neither is set, and
            a name matching no fetched group fails the sync

    Returns:
        Dict with a status ('ready' or 'failed') and summary body
    """
    config = SyncConfig.from_env()
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(f"Sync started against {config.groups_url}")

    requested_name = group_name or config.group_name
    preferences = InMemoryPreferences(selection=requested_name)
    controller = create_controller(config, preferences)

    try:
        # Load groups and resolve the stored selection against them
        controller.observe_selection()
        state = controller.load_groups().result()
        if state.status.is_failed:
            return _failure_response(
                'Failed to fetch groups', state.status.error, start_time
            )

        # An explicitly requested group must exist; never sync a different one
        if requested_name and state.selected_group is None:
            logger.error(f"Requested group '{requested_name}' not found")
            return _response('failed', f"Group '{requested_name}' not found", start_time, {
                'groups_fetched': len(state.groups),
                'error_type': 'GroupNotFound'
            })

        group = _choose_group(state.selected_group, state.groups)
        if group is None:
            logger.warning("No groups available; nothing to sync")
            return _response('ready', 'No groups available', start_time, {
                'groups_fetched': len(state.groups)
            })

        # Fetch events for the chosen group
        future = controller.load_events(group)
        state = future.result() if future else controller.state
        if state.status.is_failed:
            return _failure_response(
                f"Failed to fetch events for '{group.name}'",
                state.status.error,
                start_time
            )

        return _response('ready', 'Sync completed successfully', start_time, {
            'group': group.name,
            'groups_fetched': len(state.groups),
            'events_fetched': len(state.events),
            'upcoming_events': len(state.upcoming_events),
            'past_events': len(state.past_events),
            'first_event': state.first_event.name
        })

    finally:
        controller.close()


def _choose_group(selected: Optional[InterestGroup], groups) -> Optional[InterestGroup]:
    if selected is not None:
        return selected
    return groups[0] if groups else None


def _failure_response(message: str, error: Any, start_time: float) -> Dict[str, Any]:
    logging.getLogger(__name__).error(f"{message}: {error}")
    return _response('failed', message, start_time, {
        'error': str(error),
        'error_type': type(error).__name__
    })


def _response(
    status: str,
    message: str,
    start_time: float,
    details: Dict[str, Any]
) -> Dict[str, Any]:
    duration = time.time() - start_time
    body = {'message': message, 'duration_seconds': round(duration, 2)}
    body.update(details)
    return {'status': status, 'body': body}


if __name__ == '__main__':
    print(json.dumps(sync_handler(), indent=2))
