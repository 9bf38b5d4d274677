# tests/test_utils.py

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from tempfile import TemporaryDirectory

from service_manager.utils import SUCCESS, configure_logging, dir_size, human_size, preview, timestamp


def test_timestamp_format():
    assert timestamp(datetime(2025, 3, 7, 9, 5, 1)) == "20250307-090501"
    assert re.fullmatch(r"\d{8}-\d{6}", timestamp())


def test_human_size():
    assert human_size(512) == "512B"
    assert human_size(2048) == "2.0K"
    assert human_size(5 * 1024 ** 3) == "5.0G"


def test_dir_size_counts_nested_files():
    with TemporaryDirectory() as tmp:
        root = Path(tmp)
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "one").write_bytes(b"x" * 10)
        (root / "a" / "b" / "two").write_bytes(b"y" * 5)
        assert dir_size(root) == 15
        assert dir_size(root / "a" / "one") == 10
        assert dir_size(root / "missing") == 0


def test_preview_truncates_and_flattens():
    assert preview("a\nb") == "a\\nb"
    assert preview("x" * 10, limit=4) == "xxxx…"


def test_log_file_gets_bracketed_format():
    with TemporaryDirectory() as tmp:
        path = Path(tmp) / "logs" / "manager.log"
        log = configure_logging("INFO", path)
        log.log(SUCCESS, "done")
        log.debug("hidden")
        text = path.read_text(encoding="utf-8")
        assert re.search(r"^\[\d{4}-\d\d-\d\d \d\d:\d\d:\d\d\] \[SUCCESS\] done$", text, re.M)
        assert "hidden" not in text
        configure_logging()


def test_json_mode_emits_one_object_per_line():
    with TemporaryDirectory() as tmp:
        path = Path(tmp) / "manager.log"
        log = configure_logging("DEBUG", path, json_mode=True)
        log.warning("careful")
        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert records[-1]["level"] == "WARNING"
        assert records[-1]["msg"] == "careful"
        assert logging.getLevelName(SUCCESS) == "SUCCESS"
        configure_logging()
