"""Tests for shiftbook.middleware.logging_config."""

import json
import logging

from flask import Flask

from shiftbook.middleware.logging_config import (
    ClientStateFilter,
    JSONFormatter,
    ReadableFormatter,
    configure_logging,
)


def _record(msg="hola", **extra):
    record = logging.LogRecord("shiftbook.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_json_carries_known_extras_only(self):
        out = json.loads(JSONFormatter().format(_record(collection="employees", noise="x")))
        assert out["msg"] == "hola"
        assert out["collection"] == "employees"
        assert "noise" not in out

    def test_readable_shows_actor_and_busy_state(self):
        line = ReadableFormatter(color=False).format(
            _record(actor="admin", sync_state="syncing", duration_ms=12.4)
        )
        assert "@admin" in line
        assert "<syncing>" in line
        assert line.endswith("hola [12ms]")

    def test_readable_hides_idle_state(self):
        line = ReadableFormatter(color=False).format(_record(sync_state="idle"))
        assert "<idle>" not in line


class TestClientStateFilter:
    def test_stamps_user_and_sync_state(self, ctx, admin_online):
        record = _record()
        assert ClientStateFilter().filter(record)
        assert record.actor == "admin"
        assert record.sync_state == "idle"

    def test_explicit_actor_wins(self, ctx, admin_online):
        record = _record(actor="Sistema")
        ClientStateFilter().filter(record)
        assert record.actor == "Sistema"

    def test_app_without_client_context(self):
        record = _record()
        with Flask("bare").app_context():
            assert ClientStateFilter().filter(record)
        assert not hasattr(record, "actor")


def test_file_handler_in_instance_folder(tmp_path):
    app = Flask(__name__, instance_path=str(tmp_path))
    app.config.update(TESTING=True, LOG_FILE="logs/client.log", LOG_FORMAT="json")
    root = logging.getLogger()
    saved = list(root.handlers)
    try:
        configure_logging(app)
        files = [h for h in root.handlers if hasattr(h, "baseFilename")]
        assert len(files) == 1
        assert files[0].baseFilename == str(tmp_path / "logs" / "client.log")
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved:
            root.addHandler(handler)
