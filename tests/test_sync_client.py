"""Integration tests for the sync entry point."""
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import responses

from sync_client import JsonFormatter, SyncConfig, create_controller, setup_logging, sync_handler

GROUPS_URL = "https://coff.example.com/api/groups"


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'GROUPS_URL': GROUPS_URL,
        'LOG_LEVEL': 'INFO',
        'TIMEOUT_SECONDS': '5',
        'RETRY_BACKOFF_SECONDS': '0',
        'DEBOUNCE_SECONDS': '0.05'
    }
    with patch.dict(os.environ, env_vars):
        os.environ.pop('GROUP_NAME', None)
        yield env_vars


def iso(hours_from_now):
    moment = datetime.now(timezone.utc) + timedelta(hours=hours_from_now)
    return moment.isoformat()


@pytest.fixture
def sample_groups():
    return [{"id": "sf", "name": "SF"}, {"id": "nyc", "name": "NYC"}]


@pytest.fixture
def sample_events():
    return [
        {"id": "e1", "groupID": "nyc", "name": "Bagels", "startAt": iso(-48)},
        {"id": "e2", "groupID": "nyc", "name": "Espresso", "startAt": iso(24)},
        {"id": "e3", "groupID": "nyc", "name": "Cold Brew", "startAt": iso(3)}
    ]


class TestSyncConfig:
    """Test cases for SyncConfig."""

    def test_from_env(self, mock_env):
        config = SyncConfig.from_env()

        assert config.groups_url == GROUPS_URL
        assert config.timeout_seconds == 5.0
        assert config.debounce_seconds == pytest.approx(0.05)
        assert config.group_name is None

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = SyncConfig.from_env()

        assert config.groups_url == 'http://localhost:8080/api/groups'
        assert config.log_level == 'INFO'
        assert config.debounce_seconds == pytest.approx(0.2)

    def test_create_controller_uses_config(self, mock_env):
        controller = create_controller(SyncConfig.from_env())
        try:
            assert controller._fetcher.groups_url == GROUPS_URL
            assert controller._fetcher.timeout == 5.0
        finally:
            controller.close()


class TestSyncHandler:
    """Test cases for sync_handler."""

    @responses.activate
    def test_successful_sync(self, mock_env, sample_groups, sample_events):
        """Test a full cycle for an explicitly selected group."""
        responses.add(responses.GET, GROUPS_URL, json=sample_groups)
        responses.add(responses.GET, f"{GROUPS_URL}/nyc/events", json=sample_events)

        result = sync_handler(group_name="NYC")

        assert result['status'] == 'ready'
        body = result['body']
        assert body['group'] == 'NYC'
        assert body['groups_fetched'] == 2
        assert body['events_fetched'] == 3
        assert body['upcoming_events'] == 2
        assert body['past_events'] == 1
        assert body['first_event'] == 'Bagels'

    @responses.activate
    def test_defaults_to_first_group(self, mock_env, sample_groups):
        responses.add(responses.GET, GROUPS_URL, json=sample_groups)
        responses.add(responses.GET, f"{GROUPS_URL}/sf/events", json=[])

        result = sync_handler()

        assert result['status'] == 'ready'
        assert result['body']['group'] == 'SF'
        assert result['body']['first_event'] == 'No events'

    @responses.activate
    def test_unknown_group_name_fails(self, mock_env, sample_groups):
        """Test that a named group missing from the server is not swapped for another."""
        responses.add(responses.GET, GROUPS_URL, json=sample_groups)

        result = sync_handler(group_name="Tokyo")

        assert result['status'] == 'failed'
        assert result['body']['message'] == "Group 'Tokyo' not found"
        assert 'group' not in result['body']
        assert len(responses.calls) == 1

    @responses.activate
    def test_unknown_group_name_from_env_fails(self, mock_env, sample_groups):
        responses.add(responses.GET, GROUPS_URL, json=sample_groups)

        with patch.dict(os.environ, {'GROUP_NAME': 'Tokyo'}):
            result = sync_handler()

        assert result['status'] == 'failed'
        assert len(responses.calls) == 1

    @responses.activate
    def test_group_fetch_failure(self, mock_env):
        for _ in range(3):
            responses.add(responses.GET, GROUPS_URL, body="Server Error", status=500)

        result = sync_handler()

        assert result['status'] == 'failed'
        assert result['body']['error_type'] == 'TransportError'
        assert len(responses.calls) == 3

    @responses.activate
    def test_event_decode_failure(self, mock_env, sample_groups):
        responses.add(responses.GET, GROUPS_URL, json=sample_groups)
        responses.add(
            responses.GET,
            f"{GROUPS_URL}/sf/events",
            json=[{"id": "e1", "groupID": "sf", "name": "x", "startAt": "soon"}]
        )

        result = sync_handler(group_name="SF")

        assert result['status'] == 'failed'
        assert result['body']['error_type'] == 'DecodeError'

    @responses.activate
    def test_no_groups(self, mock_env):
        responses.add(responses.GET, GROUPS_URL, json=[])

        result = sync_handler()

        assert result['status'] == 'ready'
        assert result['body']['groups_fetched'] == 0


class TestLogging:
    """Test cases for JSON logging setup."""

    def test_setup_logging(self):
        setup_logging('DEBUG')

        root_logger = logging.getLogger()
        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)

    def test_json_formatter(self):
        record = logging.LogRecord(
            name='sync.controller',
            level=logging.CRITICAL,
            pathname=__file__,
            lineno=1,
            msg='Network error while loading events: %s',
            args=('timed out',),
            exc_info=None
        )

        payload = json.loads(JsonFormatter().format(record))

        assert payload['level'] == 'CRITICAL'
        assert payload['message'] == 'Network error while loading events: timed out'
        assert payload['logger'] == 'sync.controller'
