"""Pytest fixtures for messaging tests."""

from __future__ import annotations

import pytest
from fakes import FakeBroker

from checkin_messaging.config import ConnectionConfig
from checkin_messaging.connection import ConnectionManager


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        host="localhost",
        username="guest",
        password="guest",
        max_retries=3,
        retry_delay=0.01,
        connection_timeout=1.0,
    )


@pytest.fixture
def manager(
    broker: FakeBroker, connection_config: ConnectionConfig
) -> ConnectionManager:
    return ConnectionManager(connection_config, connector=broker.connect)


