"""Unit tests for effort parsing."""

import pytest

from tasktrail.effort import EffortError, effort_hours, effort_sort_key, parse_effort


@pytest.mark.parametrize(
    "text,hours",
    [
        ("3h", 3.0),
        ("1.5h", 1.5),
        ("90m", 1.5),
        ("30min", 0.5),
        ("2d", 16.0),
        ("1w", 40.0),
        ("2wk", 80.0),
        ("3 days", 24.0),
        ("1d 2h", 10.0),
        ("1 hr 30 min", 1.5),
    ],
)
def test_time_efforts_normalize_to_hours(text, hours):
    parsed = parse_effort(text)

    assert parsed.kind == "time"
    assert parsed.hours == pytest.approx(hours)
    assert parsed.points is None


@pytest.mark.parametrize("text,points", [("5", 5.0), ("5p", 5.0), ("3pt", 3.0), ("8 pts", 8.0), ("2 points", 2.0)])
def test_point_efforts(text, points):
    parsed = parse_effort(text)

    assert parsed.kind == "points"
    assert parsed.points == points
    assert parsed.canonical == f"{int(points)}pt"


@pytest.mark.parametrize("text", ["", "   ", "soon", "-1d", "1d 3pt", "3x"])
def test_invalid_efforts(text):
    with pytest.raises(EffortError):
        parse_effort(text)


def test_effort_error_is_value_error():
    """Callers that only know ValueError still catch parse failures."""
    with pytest.raises(ValueError):
        parse_effort("lots")


def test_effort_hours():
    assert effort_hours("1d") == 8.0
    assert effort_hours("5pt") is None
    assert effort_hours("garbage") is None
    assert effort_hours(None) is None


def test_effort_sort_key_orders_time_points_then_unparsable():
    values = [None, "bogus", "5pt", "2d", "1h"]

    ordered = sorted(values, key=effort_sort_key)

    assert ordered == ["1h", "2d", "5pt", "bogus", None]
