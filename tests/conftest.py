"""
Pytest configuration and fixtures for the Number Master server tests.
"""

import os
import random

import pytest

# Set test environment before importing app
os.environ['DEBUG'] = 'false'

from app import app, socketio, coordinator, coordinator_lock
from coordinator import Coordinator


@pytest.fixture(scope='function')
def test_app():
    """Configure the Flask application for testing."""
    app.config['TESTING'] = True
    app.config['SECRET_KEY'] = 'test-secret-key'
    yield app


@pytest.fixture(scope='function')
def client(test_app):
    """Create a test client for HTTP requests."""
    return test_app.test_client()


@pytest.fixture(scope='function')
def socketio_client(test_app, clean_runtime):
    """Create a Socket.IO test client."""
    sio_client = socketio.test_client(test_app)
    yield sio_client
    if sio_client.is_connected():
        sio_client.disconnect()


@pytest.fixture(scope='function')
def make_client(test_app, clean_runtime):
    """Factory for additional Socket.IO clients, disconnected on teardown."""
    clients = []

    def _make():
        sio_client = socketio.test_client(test_app)
        clients.append(sio_client)
        return sio_client

    yield _make
    for sio_client in clients:
        if sio_client.is_connected():
            sio_client.disconnect()


@pytest.fixture(scope='function')
def clean_runtime():
    """Ensure the shared coordinator is empty before and after each test."""
    with coordinator_lock:
        coordinator.clear()
    yield coordinator
    with coordinator_lock:
        coordinator.clear()


@pytest.fixture(scope='function')
def coord():
    """An isolated coordinator with a seeded random source."""
    return Coordinator(grace_period=300, rng=random.Random(1234))
