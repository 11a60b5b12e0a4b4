from __future__ import annotations

import json
import logging

from puli_core.logging_setup import configure_logging, get_logger


def test_json_log_file(tmp_path) -> None:
    log_file = tmp_path / "logs" / "install.jsonl"
    configure_logging(log_file=log_file)

    get_logger("service").info("installed", extra={"event": "installed"})
    for handler in logging.getLogger("puli").handlers:
        handler.flush()

    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert records[-1]["logger"] == "puli.service"
    assert records[-1]["event"] == "installed"
    assert records[-1]["level"] == "INFO"


def test_configure_is_idempotent() -> None:
    first = configure_logging()
    second = configure_logging(verbose=True)

    assert first is second
    assert len(first.handlers) == 1
    assert first.propagate is False


def test_get_logger_names() -> None:
    assert get_logger().name == "puli"
    assert get_logger("transport").name == "puli.transport"
