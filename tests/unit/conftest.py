"""Shared fixtures for unit tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_logging_propagation():
    """Keep tests that reconfigure logging from leaking propagation changes."""
    yield
    logging.getLogger("wtenv").propagate = False
