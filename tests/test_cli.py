"""Tests for the command line entry points and logging setup."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest
from loguru import logger

from chardat_exchange import serializer
from chardat_exchange.cli import cli_main
from chardat_exchange.logging_utils import configure_logging, log_file_path, shutdown_logging
from chardat_exchange.server import build_parser, get_version, main
from chardat_exchange.snapshot import SnapshotBuilder
from chardat_exchange.storage import SnapshotStore

from character_factory import make_character


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    shutdown_logging()
    logger.remove()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def stored_character(tmp_path: Path) -> Path:
    character = make_character(seed=5, vertex_count=20)
    blob = serializer.encode(SnapshotBuilder().build(character, character_id=5))
    SnapshotStore(tmp_path).save(5, blob)
    return tmp_path


class TestParser:
    def test_receive_options(self) -> None:
        args = build_parser().parse_args(["receive", "--port", "6000", "--serve-rest"])
        assert args.command == "receive"
        assert args.transfer_port == 6000
        assert args.serve_rest is True

    def test_send_requires_id(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["send"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self) -> None:
        assert get_version()


class TestMain:
    def test_inspect_prints_summary(self, stored_character: Path, capsys) -> None:
        code = main(["--storage-dir", str(stored_character), "inspect", "--id", "5"])
        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["characterId"] == 5
        assert summary["parts"][0]["vertexCount"] == 20

    def test_inspect_missing_character(self, tmp_path: Path) -> None:
        assert main(["--storage-dir", str(tmp_path), "inspect", "--id", "1"]) == 1

    def test_send_missing_character(self, tmp_path: Path) -> None:
        assert main(["--storage-dir", str(tmp_path), "send", "--id", "1"]) == 1

    def test_invalid_config_exits_with_2(self, tmp_path: Path, capsys) -> None:
        config_file = tmp_path / "bad.toml"
        config_file.write_text("chunk_size = -1\n")
        assert main(["--config", str(config_file), "inspect", "--id", "1"]) == 2
        assert "chunk_size" in capsys.readouterr().err

    def test_missing_config_file_exits_with_2(self, tmp_path: Path) -> None:
        assert main(["--config", str(tmp_path / "nope.toml"), "inspect", "--id", "1"]) == 2

    def test_cli_main_exits_with_status(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(
            sys, "argv", ["chardat-exchange", "--storage-dir", str(tmp_path), "inspect", "--id", "1"]
        )
        with pytest.raises(SystemExit) as excinfo:
            cli_main()
        assert excinfo.value.code == 1


class TestLogging:
    def test_file_sink_writes_json(self, tmp_path: Path) -> None:
        log_file = configure_logging(tmp_path / "logs", console_level="WARNING")
        assert log_file == log_file_path(tmp_path / "logs")

        logging.getLogger("chardat_exchange.tests").info("stdlib record routed")
        shutdown_logging()

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        messages = [record["record"]["message"] for record in records]
        assert "stdlib record routed" in messages

    def test_console_only(self) -> None:
        assert configure_logging(None) is None
