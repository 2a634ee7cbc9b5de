import numpy as np
import pytest

from corticell.model_neocortical import NeocorticalCell
from corticell.plotting import plot_morphology, plot_traces
from corticell.results import SimulationResult


def test_plot_traces(tmp_path):
    t = np.linspace(0.0, 10.0, 101)
    result = SimulationResult(
        t_ms=t,
        traces={"soma": -70.0 + 100.0 * np.exp(-((t - 5.0) ** 2))},
        spike_times={"soma": np.array([4.6])},
    )
    path = plot_traces(result, str(tmp_path / "figs" / "vm.png"))
    assert (tmp_path / "figs" / "vm.png").stat().st_size > 0
    assert path.endswith("vm.png")
    with pytest.raises(KeyError):
        plot_traces(result, str(tmp_path / "bad.png"), labels=["dend"])


def test_plot_morphology(tmp_path):
    cell = NeocorticalCell("l4_stellate")
    plot_morphology(cell, str(tmp_path / "xy.png"), plane="xy")
    plot_morphology(cell.soma, str(tmp_path / "xz.png"))
    assert (tmp_path / "xy.png").stat().st_size > 0
    assert (tmp_path / "xz.png").stat().st_size > 0
    with pytest.raises(ValueError):
        plot_morphology(cell, str(tmp_path / "bad.png"), plane="xw")
