"""Tests for log record enrichment."""

import logging

from flakeguard.core.logging import DEPENDENCY_LOGGERS, ServiceContext, quiet_dependencies


def test_service_context_stamps_identity() -> None:
    processor = ServiceContext("flakeguard", "0.1.0", "worker")

    event = processor(None, "info", {"event": "Sweep started"})

    assert event == {"event": "Sweep started", "service": "flakeguard", "version": "0.1.0", "role": "worker"}


def test_service_context_keeps_explicit_values() -> None:
    processor = ServiceContext("flakeguard", "0.1.0", "api")

    event = processor(None, "info", {"event": "Request rejected", "role": "scheduler"})

    assert event["role"] == "scheduler"


def test_dependency_loggers_are_quieted() -> None:
    previous = {name: logging.getLogger(name).level for name in DEPENDENCY_LOGGERS}
    try:
        quiet_dependencies("ERROR")
        assert all(logging.getLogger(name).level == logging.ERROR for name in DEPENDENCY_LOGGERS)
    finally:
        for name, level in previous.items():
            logging.getLogger(name).setLevel(level)
