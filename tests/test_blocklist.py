"""
Brief: Tests for blocklist loading and matching.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

from sinkhole.blocklist import (
    Blocklist,
    load_blocklist,
    normalize_name,
    read_blocklist_file,
)
from sinkhole.errors import BlocklistUnavailable


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("ads.example.com", "ads.example.com"),
        ("  Ads.Example.COM.  ", "ads.example.com"),
        ("tracker.net\r", "tracker.net"),
        ("", ""),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


def test_exact_match_only():
    bl = Blocklist(["ads.example.com"])
    assert bl.is_blocked("ads.example.com")
    assert not bl.is_blocked("www.ads.example.com")
    assert not bl.is_blocked("example.com")


def test_match_is_case_insensitive():
    bl = Blocklist(["Ads.Example.com"])
    assert "ADS.example.COM" in bl
    assert bl.is_blocked("ads.example.com.")


def test_contains_rejects_non_strings():
    assert 42 not in Blocklist(["42"])


def test_disabled_list_never_blocks():
    bl = Blocklist.disabled()
    assert not bl.enabled
    assert len(bl) == 0
    assert not bl.is_blocked("anything.example")


def test_read_blocklist_file_strips_lines(tmp_path):
    path = tmp_path / "block.txt"
    path.write_text("ads.example.com\r\n  tracker.net \n\nlast.example", encoding="utf-8")
    assert read_blocklist_file(str(path)) == [
        "ads.example.com",
        "tracker.net",
        "",
        "last.example",
    ]


def test_read_blocklist_file_missing(tmp_path):
    with pytest.raises(BlocklistUnavailable):
        read_blocklist_file(str(tmp_path / "missing.txt"))


def test_load_blocklist_from_file(tmp_path, caplog):
    path = tmp_path / "block.txt"
    path.write_text("ads.example.com\ntracker.net\n", encoding="utf-8")
    with caplog.at_level(logging.INFO, logger="sinkhole.blocklist"):
        bl = load_blocklist(str(path))
    assert bl.enabled
    assert len(bl) == 2
    assert bl.is_blocked("tracker.net")
    assert "Loaded 2 blocklist entries" in caplog.text


def test_empty_lines_never_match_real_names(tmp_path):
    path = tmp_path / "block.txt"
    path.write_text("\n\n", encoding="utf-8")
    bl = load_blocklist(str(path))
    assert len(bl) == 0
    assert not bl.is_blocked("example.com")


@pytest.mark.parametrize("entry", ["", "  ", ".", " . "])
def test_blank_and_dot_entries_do_not_block_root(entry):
    bl = Blocklist(["ads.example.com", entry])
    assert len(bl) == 1
    assert not bl.is_blocked("")
    assert not bl.is_blocked(".")
    assert "" not in bl


def test_load_blocklist_none_is_disabled():
    bl = load_blocklist(None)
    assert not bl.enabled


def test_load_blocklist_unreadable_file_warns_and_is_empty(tmp_path, caplog):
    with caplog.at_level(logging.WARNING, logger="sinkhole.blocklist"):
        bl = load_blocklist(str(tmp_path / "nope.txt"))
    assert bl.enabled
    assert len(bl) == 0
    assert not bl.is_blocked("ads.example.com")
    assert "empty blocklist" in caplog.text
