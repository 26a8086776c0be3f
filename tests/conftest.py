"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_portpatch_logger():
    """Undo configure_logging() so caplog sees records in later tests."""
    yield
    log = logging.getLogger("portpatch")
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.propagate = True
    log.setLevel(logging.NOTSET)
