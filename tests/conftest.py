# -*- coding: utf-8 -*-

"""
Pytest configuration and fixtures for serialio tests.
"""
import pytest
import asyncio
from unittest.mock import Mock

import serialio

# Import all fixtures from virtual_ports
from .fixtures.virtual_ports import *

DISCOVERED_PORTS = ['/dev/ttyS0', '/dev/ttyUSB0']


@pytest.fixture
def mock_serial():
    """Mock pyserial instance for transport tests."""
    instance = Mock()
    instance.port = '/dev/ttyTEST0'
    instance.is_open = True
    instance.fileno.return_value = 42
    instance.in_waiting = 0
    instance.read.return_value = b""
    instance.write.return_value = 0
    instance.close.return_value = None
    return instance


@pytest.fixture
def mock_protocol():
    """Mock asyncio protocol for testing."""
    protocol = Mock(spec=asyncio.Protocol)
    protocol.connection_made = Mock()
    protocol.connection_lost = Mock()
    protocol.data_received = Mock()
    return protocol


@pytest.fixture
def registry():
    """Empty registry with a fixed discovery result."""
    return serialio.PortRegistry(discover=lambda: list(DISCOVERED_PORTS))


@pytest.fixture
def port_pair(virtual_backend, registry):
    """Open ports on both ends of the vA <-> vB link."""
    near = serialio.open('vA', 115200, registry=registry, backend=virtual_backend)
    far = serialio.open('vB', 115200, registry=registry, backend=virtual_backend)
    yield near, far
    for port in (near, far):
        if not port.closed:
            port.close()
