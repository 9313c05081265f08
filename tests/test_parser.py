from datetime import datetime, timezone

import pytest

from moco_common import (
    Interval,
    ParseError,
    RawInterval,
    ValidationError,
    config_value,
    format_iso_timestamp,
    parse_report,
    parse_timew_timestamp,
    split_project_tag,
)

REPORT = """temp.report.start: 20240228T000000Z
temp.report.end: 20240228T235959Z
debug: 0
verbose: 1

[
  {
    "id": 1,
    "start": "20240228T080000Z",
    "end": "20240228T120000Z",
    "tags": ["work", "project1"]
  },
  {
    "id": 2,
    "start": "20240228T130000Z",
    "end": "20240228T170000Z",
    "tags": ["work", "project2"]
  }
]"""


def test_parse_report():
    report = parse_report(REPORT)

    assert report.config["temp"]["report"]["start"] == "20240228T000000Z"
    assert report.config["temp"]["report"]["end"] == "20240228T235959Z"
    assert report.config["debug"] is False
    assert report.config["verbose"] is True

    assert len(report.intervals) == 2
    assert report.intervals[0].id == 1
    assert report.intervals[0].start == "20240228T080000Z"
    assert report.intervals[0].tags == ("work", "project1")
    assert report.intervals[1].id == 2


def test_parse_minimal_report():
    raw = (
        'debug: 0\nverbose: 1\n\n[{"id":1,"start":"20240228T080000Z",'
        '"end":"20240228T120000Z","tags":["work","project1"]}]'
    )

    report = parse_report(raw)

    assert report.config["debug"] is False
    assert report.config["verbose"] is True
    assert [interval.id for interval in report.intervals] == [1]
    assert report.intervals[0].tags == ("work", "project1")


def test_config_value_keeps_everything_after_first_separator():
    report = parse_report("reports.moco.note: see: the docs\n\n[]")

    assert config_value(report.config, "reports.moco.note") == "see: the docs"


def test_config_skips_malformed_lines():
    report = parse_report("novalue:\n: orphan\nplain line\nname: ok\n\n[]")

    assert dict(report.config) == {"debug": False, "verbose": False, "name": "ok"}


def test_config_debug_only_true_for_one():
    report = parse_report("debug: on\nverbose: 1\n\n[]")

    assert report.config["debug"] is False
    assert report.config["verbose"] is True


def test_config_nested_key_does_not_replace_string_leaf():
    report = parse_report("color: on\ncolor.today: red\n\n[]")

    assert report.config["color"] == "on"


def test_config_is_read_only():
    report = parse_report("reports.moco.domain: acme\n\n[]")

    with pytest.raises(TypeError):
        report.config["debug"] = True
    with pytest.raises(TypeError):
        report.config["reports"]["moco"]["domain"] = "other"


def test_empty_json_section_yields_no_intervals():
    assert parse_report("debug: 1\n\n").intervals == ()
    assert parse_report("debug: 1\n\n   \n").intervals == ()


def test_payload_without_header():
    report = parse_report('[{"id": 3, "start": "20240228T080000Z", "tags": []}]')

    assert report.config["debug"] is False
    assert report.intervals[0].id == 3
    assert report.intervals[0].end == ""


def test_malformed_json_raises_parse_error():
    with pytest.raises(ParseError):
        parse_report('debug: 0\n\n[{"id": 1, "start": ')


def test_non_array_json_raises_parse_error():
    with pytest.raises(ParseError):
        parse_report('debug: 0\n\n{"id": 1}')


def test_export_must_be_strict_json():
    with pytest.raises(ParseError):
        parse_report("debug: 0\n\n[{id: 1, 'start': '20240228T080000Z', tags: [],},]")


def test_string_tags_are_rejected():
    with pytest.raises(ParseError, match="must be a list"):
        parse_report('debug: 0\n\n[{"id": 1, "start": "20240228T080000Z", "tags": "work"}]')


@pytest.mark.parametrize("interval_id", ['"1"', "1.5", "true", "null"])
def test_non_integer_id_is_rejected(interval_id):
    with pytest.raises(ParseError, match="id must be an integer"):
        parse_report(f'debug: 0\n\n[{{"id": {interval_id}, "start": "20240228T080000Z"}}]')


def test_missing_tags_yield_empty_tuple():
    report = parse_report('[{"id": 4, "start": "20240228T080000Z", "tags": null}]')

    assert report.intervals[0].tags == ()


def test_split_project_tag():
    assert split_project_tag("SUGB: Test description") == ("sugb", "Test description")
    assert split_project_tag("Acme App:Fix login  ") == ("acme app", "Fix login")
    assert split_project_tag("work") == ("", "")
    assert split_project_tag("") == ("", "")


def test_to_interval_splits_first_tag():
    raw = RawInterval(
        id=7,
        start="20250228T063000Z",
        end="20250228T070000Z",
        tags=("SUGB: Test description", "work", "review"),
    )

    assert raw.to_interval() == Interval(
        id=7,
        start="20250228T063000Z",
        end="20250228T070000Z",
        project="sugb",
        description="Test description",
        tags=("work", "review"),
    )


def test_to_intervals_without_project_label():
    report = parse_report(REPORT)

    intervals = report.to_intervals()

    assert [interval.id for interval in intervals] == [1, 2]
    assert intervals[0].project == ""
    assert intervals[0].description == ""
    assert intervals[0].tags == ("project1",)


def test_format_iso_timestamp():
    assert format_iso_timestamp("20250228T060000Z") == "2025-02-28T06:00:00Z"


@pytest.mark.parametrize(
    "value",
    ["20250228T063000Z", "20240229T235959Z", "19991231T000000Z", "20250101T120101Z"],
)
def test_timestamp_matches_digit_groups(value):
    expected = datetime(
        int(value[0:4]),
        int(value[4:6]),
        int(value[6:8]),
        int(value[9:11]),
        int(value[11:13]),
        int(value[13:15]),
        tzinfo=timezone.utc,
    )

    assert parse_timew_timestamp(value) == expected


@pytest.mark.parametrize(
    "value",
    ["", "garbage", "20251328T000000Z", "2025-02-28", "20250228X063000Q", "20250228T063000Z123"],
)
def test_invalid_timestamp(value):
    with pytest.raises(ValidationError):
        parse_timew_timestamp(value)


@pytest.mark.parametrize("value", ["20250228X063000Q", "20250228T0630000", "20250228T06300Z"])
def test_format_iso_timestamp_checks_layout(value):
    with pytest.raises(ValidationError):
        format_iso_timestamp(value)
