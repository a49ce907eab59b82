"""
Shared fixtures for monitoring tests.
"""

from datetime import datetime, timezone

import pytest

from pubsub_monitoring.config import MonitoringConfig
from pubsub_monitoring.core.clock import MockClock


START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Mock clock pinned to a fixed start time."""
    return MockClock(START_TIME)


@pytest.fixture
def bare_config():
    """Configuration without the default metric set."""
    return MonitoringConfig(register_default_metrics=False)
