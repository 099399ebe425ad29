from __future__ import annotations

import logging

from parcomm.telemetry import logging as plog


def test_context_prefix(caplog):
    log = plog.get_logger("parcomm.test.ctx", {"rank": 2, "root": 0})
    with caplog.at_level(logging.DEBUG, logger="parcomm.test.ctx"):
        log.debug("sized %d bytes", 16)
    assert "[rank=2 root=0] sized 16 bytes" in caplog.text


def test_plain_logger_without_context():
    assert isinstance(plog.get_logger("parcomm.test.plain"), logging.Logger)


def test_env_level(monkeypatch):
    monkeypatch.setenv("PARCOMM_LOG_LEVEL", "debug")
    assert plog._env_level() == logging.DEBUG
    monkeypatch.setenv("PARCOMM_LOG_LEVEL", "chatty")
    assert plog._env_level() == logging.WARNING
