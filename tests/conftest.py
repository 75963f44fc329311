"""Shared fixtures for the test suite."""

import pytest

from tests.fakes import RecordingSink


@pytest.fixture
def recording_sink():
    return RecordingSink()
