"""
Pytest configuration and fixtures
"""
import pytest

from corticell.morphology import Section, line_section


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    """Keep status prints and progress bars out of the test output."""
    monkeypatch.setenv("CORTICELL_QUIET", "1")


@pytest.fixture
def cylinder() -> Section:
    """100 um long, 2 um wide straight dendrite along x."""
    return line_section("cyl", "dend", (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), 100.0, 2.0)


@pytest.fixture
def soma_dend():
    """Cylindrical soma with one 5-segment dendrite at its 1-end."""
    soma = line_section("soma", "soma", (0.0, 0.0, -10.0), (0.0, 0.0, 1.0), 20.0, 20.0)
    dend = line_section("dend", "dend", (0.0, 0.0, 10.0), (0.0, 0.0, 1.0), 100.0, 2.0)
    dend.nseg = 5
    dend.connect(soma, 1.0)
    return soma, dend
