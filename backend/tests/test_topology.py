"""Tests for the static network tables."""

from app.core.topology import (
    DESTINATIONS,
    LINE_NAMES,
    LINE_ORDER,
    STATION_NAMES,
    destination,
    line_for_train,
    station_index,
)


def test_four_lines_with_orders():
    assert LINE_NAMES == ("verde", "azul", "amarela", "vermelha")
    assert set(LINE_ORDER) == set(LINE_NAMES)


def test_every_station_has_a_name():
    for order in LINE_ORDER.values():
        for sid in order:
            assert sid in STATION_NAMES


def test_destination_terminals_are_line_ends():
    for dest in DESTINATIONS.values():
        order = LINE_ORDER[dest.line]
        assert dest.terminal in (order[0], order[-1])


def test_line_for_train():
    assert line_for_train("123C") == "verde"
    assert line_for_train(" 4a ") == "azul"
    assert line_for_train("9B") == "amarela"
    assert line_for_train("2D") == "vermelha"
    assert line_for_train("7X") is None
    assert line_for_train("") is None
    assert line_for_train(None) is None


def test_lookups():
    assert destination("54").terminal == "CS"
    assert destination(" 42 ").name == "Santa Apolónia"
    assert destination("99") is None
    assert destination(None) is None
    assert station_index("verde", "TE") == 0
    assert station_index("azul", "SP") == 17
    assert station_index("verde", "SP") is None
    assert station_index("roxa", "TE") is None
