from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from npm_statistic.errors import ConfigError
from npm_statistic.extract import NAME_ERROR, ExtractRules, extract_snapshot, parse_count

FIXTURES = Path(__file__).parent / "fixtures"
NOW = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


def _page() -> str:
    return (FIXTURES / "left-pad.html").read_text(encoding="utf-8")


def test_extract_snapshot_reads_all_fields():
    shot = extract_snapshot(_page(), 200, now=NOW)
    assert shot == {
        "date": "2024-03-05T10:00:00+00:00",
        "httpStatus": 200,
        "name": "left-pad",
        "version": "1.1.3",
        "release": 12,
        "dependencies": 0,
        "publisher": "stevemao",
        "publishDate": "2016-04-28T12:13:14.000Z",
        "day": 84331,
        "week": 512003,
        "month": 2204117,
    }


def test_no_name_marker_stops_extraction(caplog):
    caplog.set_level(logging.DEBUG)
    doc = "<html><strong class=\"daily-downloads\">10</strong></html>"

    shot = extract_snapshot(doc, 404, now=NOW)

    assert shot == {"date": "2024-03-05T10:00:00+00:00", "httpStatus": 404, "error": NAME_ERROR}
    msgs = [r.getMessage() for r in caplog.records]
    assert msgs.count("cannot find name") == 1
    assert not [m for m in msgs if m.startswith("cannot find") and m != "cannot find name"]


def test_each_missing_field_logged_once(caplog):
    caplog.set_level(logging.DEBUG)
    doc = '<h1 class="package-name"><a href="/package/x">x</a></h1>'

    shot = extract_snapshot(doc, 200, now=NOW)

    assert set(shot) == {"date", "httpStatus", "name"}
    msgs = [r.getMessage() for r in caplog.records if r.getMessage().startswith("cannot find")]
    assert sorted(msgs) == sorted([
        "cannot find version",
        "cannot find dependencies",
        "cannot find publisher",
        "cannot find day",
        "cannot find week",
        "cannot find month",
    ])


def test_unparseable_count_defaults_to_zero():
    doc = (
        '<h1 class="package-name"><a>x</a></h1>'
        '<strong class="daily-downloads">n/a</strong>'
        '<strong class="weekly-downloads">1 024</strong>'
    )
    shot = extract_snapshot(doc, 200, now=NOW)
    assert shot["day"] == 0
    assert shot["week"] == 1024
    assert "month" not in shot
    assert parse_count(None) == 0


def test_rules_can_be_overridden_from_config():
    rules = ExtractRules.from_dict({"name": r'<meta name="pkg" content="([^"]+)">'})
    shot = extract_snapshot('<meta name="pkg" content="@scope/tool">', 200, rules, now=NOW)
    assert shot["name"] == "@scope/tool"


@pytest.mark.parametrize("overrides", [{"nope": "x"}, {"name": 1}, {"name": "("}, ["name"]])
def test_bad_rule_overrides_are_config_errors(overrides):
    with pytest.raises(ConfigError):
        ExtractRules.from_dict(overrides)


@pytest.mark.parametrize(
    "overrides",
    [
        {"version": r"is the latest"},
        {"version": r"<strong>([^<]+)</strong> is the latest"},
        {"publisher": r'data-date="([^"]+)"'},
        {"day": r"daily-downloads"},
    ],
)
def test_rule_overrides_need_enough_capture_groups(overrides):
    with pytest.raises(ConfigError, match="capture group"):
        ExtractRules.from_dict(overrides)
