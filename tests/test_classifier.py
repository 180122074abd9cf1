import typing

import pytest

from assumptions import RagThresholds, ASCENDING, DESCENDING
from engine import classify, project, RED, AMBER, GREEN


def test_ascending_bands():
    t = RagThresholds(red=8, amber=4, polarity=ASCENDING)
    assert classify(8.8, t) == RED
    assert classify(8, t) == RED
    assert classify(4, t) == AMBER
    assert classify(3.99, t) == GREEN


def test_descending_bands():
    t = RagThresholds(red=6, amber=12, polarity=DESCENDING)
    assert classify(4.58, t) == RED
    assert classify(6, t) == RED
    assert classify(12, t) == AMBER
    assert classify(12.01, t) == GREEN


def test_polarity_override():
    t = RagThresholds(red=15, amber=8)
    assert classify(10, t) == AMBER
    assert classify(10, t, polarity=DESCENDING) == RED
    assert classify(20, t, polarity=DESCENDING) == GREEN


def test_misordered_thresholds_are_not_guarded():
    """Breakpoints are taken as given, even when red is the milder one."""
    t = RagThresholds(red=4, amber=8, polarity=ASCENDING)
    assert classify(5, t) == RED
    assert classify(3, t) == GREEN


def test_unknown_polarity_rejected():
    with pytest.raises(ValueError):
        RagThresholds(red=1, amber=2, polarity="sideways")
    with pytest.raises(ValueError):
        classify(1.0, RagThresholds(red=1, amber=2), polarity="sideways")


def test_reserve_classification_is_monotonic():
    """Once past the amber breakpoint the label never regresses."""
    t = RagThresholds(red=6, amber=12, polarity=DESCENDING)
    order = {RED: 0, AMBER: 1, GREEN: 2}
    labels = [classify(m / 4, t) for m in range(0, 120)]
    ranks = [order[l] for l in labels]
    assert ranks == sorted(ranks)
    assert all(l == GREEN for m, l in zip(range(0, 120), labels) if m / 4 > 12)


def test_optional_overrides_are_annotated():
    assert set(typing.get_args(typing.get_type_hints(classify)["polarity"])) == {str, type(None)}
    assert set(typing.get_args(typing.get_type_hints(project)["demand_growth"])) == {float, type(None)}
