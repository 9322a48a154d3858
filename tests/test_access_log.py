"""Tests for the CSV access log hooked into the counter app."""

import csv
import logging

from access_log import CSV_HEADER, AccessLog
from counter_server import create_app
from request_counter import SlidingWindowCounter


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


def test_header_written_once(tmp_path):
    path = str(tmp_path / "access_log.csv")
    AccessLog(path)
    AccessLog(path)
    assert read_rows(path) == [CSV_HEADER]


def test_requests_are_logged(tmp_path, caplog):
    path = str(tmp_path / "access_log.csv")
    counter = SlidingWindowCounter(str(tmp_path / "request-file.txt"))
    client = create_app(counter, AccessLog(path)).test_client()

    with caplog.at_level(logging.INFO, logger="access_log"):
        client.get("/")
        client.post("/")
        client.get("/missing")

    rows = read_rows(path)
    assert rows[0] == CSV_HEADER
    assert [(r[2], r[3]) for r in rows[1:]] == [("/", "200"), ("/", "405"), ("/missing", "404")]
    assert all(r[0].endswith("Z") for r in rows[1:])
    assert len([r for r in caplog.records if r.name == "access_log"]) == 3


def test_without_csv_only_logs(tmp_path, caplog):
    log = AccessLog()
    with caplog.at_level(logging.INFO, logger="access_log"):
        log.record(None, "/", 200)
    assert "unknown / 200" in caplog.text
    assert list(tmp_path.iterdir()) == []


def test_csv_write_failure_is_a_warning(tmp_path, caplog):
    log = AccessLog(str(tmp_path / "missing" / "access_log.csv"))
    with caplog.at_level(logging.WARNING, logger="access_log"):
        log.record("10.0.0.1", "/", 200)
    assert "Error escribiendo log" in caplog.text
