"""Remote fetcher for interest groups and their events."""
import logging
import re
import time
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import urlparse

import requests

from fetcher.errors import DecodeError, InvalidLocatorError, TransportError
from processor.models import Event, InterestGroup, Location, Venue

logger = logging.getLogger(__name__)


class RemoteFetcher:
    """Fetches groups and events as JSON with a bounded retry policy."""

    GROUP_RETRIES = 2
    EVENT_RETRIES = 5

    def __init__(
        self,
        groups_url: str,
        timeout: float = 30,
        backoff_seconds: float = 0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the fetcher.

        Args:
            groups_url: Fixed URL of the groups collection
            timeout: HTTP request timeout in seconds (default: 30)
            backoff_seconds: Base delay between retries; 0 retries immediately
            session: Optional requests session to reuse connections
        """
        self.groups_url = groups_url.rstrip('/')
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()

    def fetch_groups(self) -> List[InterestGroup]:
        """
        Fetch all interest groups.

        Returns:
            List of InterestGroup objects

        Raises:
            TransportError: If every attempt failed at the transport layer
            DecodeError: If the payload is not a valid group array
        """
        payload = self._get_json(self.groups_url, self.GROUP_RETRIES)
        groups = [self._decode_group(item) for item in self._as_array(payload)]
        logger.info(f"Fetched {len(groups)} groups")
        return groups

    def fetch_events(self, group: InterestGroup) -> List[Event]:
        """
        Fetch all events of a group.

        Args:
            group: Group whose events resource is requested

        Returns:
            List of Event objects in server order

        Raises:
            InvalidLocatorError: If the group has no usable events URL
            TransportError: If every attempt failed at the transport layer
            DecodeError: If the payload is not a valid event array
        """
        if not has_usable_locator(group):
            raise InvalidLocatorError(
                f"Group '{group.name}' has no usable events URL"
            )

        payload = self._get_json(group.events_url, self.EVENT_RETRIES)
        events = [self._decode_event(item) for item in self._as_array(payload)]
        logger.info(f"Fetched {len(events)} events for group '{group.name}'")
        return events

    def _get_json(self, url: str, retries: int) -> Any:
        """
        GET a URL, retrying transport failures, and parse the JSON body.

        Args:
            url: Resource to request
            retries: Additional attempts allowed after the first one

        Returns:
            Parsed JSON document
        """
        max_attempts = retries + 1

        # Retry transport failures only
        for attempt in range(max_attempts):
            try:
                logger.debug(f"GET {url} (attempt {attempt + 1}/{max_attempts})")
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                break

            except requests.RequestException as e:
                if attempt < max_attempts - 1:
                    # Calculate exponential backoff delay
                    delay = self.backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{max_attempts}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    if delay > 0:
                        time.sleep(delay)
                else:
                    logger.error(
                        f"All {max_attempts} attempts failed for {url}. Last error: {e}"
                    )
                    raise TransportError(f"Request to {url} failed: {e}", cause=e) from e

        # Decode errors are never retried
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {url}: {e}", cause=e) from e

    def _as_array(self, payload: Any) -> list:
        if not isinstance(payload, list):
            raise DecodeError(
                f"Expected a JSON array, got {type(payload).__name__}"
            )
        return payload

    def _decode_group(self, item: Any) -> InterestGroup:
        """
        Convert a JSON object to an InterestGroup.

        A missing ``eventsURL`` is derived from the group id when one is
        present.
        """
        try:
            name = _require_str(item, 'name')
            group_id = _optional_str(item, 'id')
            events_url = _optional_str(item, 'eventsURL')
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Invalid group record: {e}", cause=e) from e

        if events_url is None and group_id:
            events_url = f"{self.groups_url}/{group_id}/events"

        return InterestGroup(name=name, id=group_id, events_url=events_url)

    def _decode_event(self, item: Any) -> Event:
        """Convert a JSON object to an Event."""
        try:
            venue = None
            if item.get('venue') is not None:
                venue = _decode_venue(item['venue'])

            return Event(
                id=_require_str(item, 'id'),
                group_id=_require_str(item, 'groupID'),
                name=_require_str(item, 'name'),
                image_url=_optional_str(item, 'imageURL'),
                start_at=parse_iso8601(item.get('startAt')),
                end_at=parse_iso8601(item.get('endAt')),
                venue=venue
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Invalid event record: {e}", cause=e) from e


def has_usable_locator(group: InterestGroup) -> bool:
    """
    Check that a group carries an absolute http(s) events URL.

    Args:
        group: Group to inspect

    Returns:
        True if an events request can be issued for the group
    """
    if not group.events_url or not group.events_url.strip():
        return False
    parsed = urlparse(group.events_url.strip())
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


ISO8601_PATTERN = re.compile(
    r'^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})'
    r'(?:\.(\d{1,9}))?'
    r'(Z|z|[+-]\d{2}:\d{2})$'
)


def parse_iso8601(value: Any) -> Optional[datetime]:
    """
    Parse a strict ISO-8601 timestamp carrying a UTC offset.

    Accepted form is ``YYYY-MM-DDTHH:MM:SS[.fraction](Z|+HH:MM|-HH:MM)``
    with 1 to 9 fractional digits; digits past microseconds are truncated.

    Args:
        value: String such as "2024-01-15T19:00:00Z", or None

    Returns:
        Timezone-aware datetime, or None when the value is absent

    Raises:
        ValueError: If the value is not an offset-qualified ISO-8601 string
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Date must be a string, got {type(value).__name__}")

    match = ISO8601_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Date '{value}' is not an ISO-8601 timestamp with UTC offset")

    base, fraction, offset = match.groups()

    # Normalize to microseconds and a +HH:MM offset
    microseconds = (fraction or '0')[:6].ljust(6, '0')
    if offset in ('Z', 'z'):
        offset = '+00:00'

    return datetime.strptime(f"{base}.{microseconds}{offset}", '%Y-%m-%dT%H:%M:%S.%f%z')


def _decode_venue(raw: dict) -> Venue:
    location = None
    if raw.get('location') is not None:
        location = Location(
            latitude=float(raw['location']['latitude']),
            longitude=float(raw['location']['longitude'])
        )
    return Venue(name=_require_str(raw, 'name'), location=location)


def _require_str(item: dict, key: str) -> str:
    value = item[key]
    if not isinstance(value, str):
        raise ValueError(f"Field '{key}' must be a string")
    return value


def _optional_str(item: dict, key: str) -> Optional[str]:
    value = item.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"Field '{key}' must be a string")
    return value
