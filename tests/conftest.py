from dataclasses import replace

import pytest

from assumptions import default_snapshot, ScenarioLevers


@pytest.fixture
def snapshot():
    return default_snapshot()


@pytest.fixture
def neutral(snapshot):
    """Baseline position with every lever at its no-op value."""
    return replace(snapshot, levers=ScenarioLevers())
