import numpy as np
import pytest

from corticell.results import SimulationResult, load_result


@pytest.fixture
def result():
    t = np.arange(0.0, 1000.0 + 1e-9, 1.0)
    vm = np.full(t.size, -70.0)
    vm[100] = 30.0
    return SimulationResult(
        t_ms=t,
        traces={"soma": vm, "dend[0](0.5)": vm - 1.0},
        spike_times={"soma": np.array([99.5, 300.0, 700.0])},
        meta={"dt_ms": 1.0},
    )


def test_summary(result):
    s = result.summary()
    assert s == {"vm0_mV": -70.0, "vm_max_mV": 30.0, "vm_min_mV": -70.0, "spike_count": 3}
    assert result.summary("dend[0](0.5)")["spike_count"] == 0


def test_rates_and_intervals(result):
    assert result.firing_rate_hz() == pytest.approx(3.0)
    assert result.firing_rate_hz(t_start_ms=200.0, t_stop_ms=700.0) == pytest.approx(2.0)
    assert result.firing_rate_hz(t_start_ms=500.0, t_stop_ms=500.0) == 0.0
    np.testing.assert_allclose(result.interspike_intervals(), [200.5, 400.0])


def test_missing_labels(result):
    with pytest.raises(KeyError):
        result.trace("axon")
    with pytest.raises(KeyError, match="Available"):
        result.spike_count("axon")
    with pytest.raises(KeyError, match="Available"):
        result.firing_rate_hz("axon")
    with pytest.raises(KeyError, match="Available"):
        result.interspike_intervals("axon")
    np.testing.assert_array_equal(result.spikes(), [99.5, 300.0, 700.0])


def test_save_and_load(tmp_path, result):
    path = result.save(str(tmp_path / "out" / "result.npy"))
    loaded = load_result(path)
    np.testing.assert_array_equal(loaded.t_ms, result.t_ms)
    np.testing.assert_array_equal(loaded.trace("dend[0](0.5)"), result.trace("dend[0](0.5)"))
    np.testing.assert_array_equal(loaded.spike_times["soma"], result.spike_times["soma"])
    assert loaded.meta == {"dt_ms": 1.0}


def test_load_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_result(str(tmp_path / "missing.npy"))
    np.save(tmp_path / "array.npy", np.zeros(3))
    with pytest.raises(TypeError):
        load_result(str(tmp_path / "array.npy"))
    np.save(tmp_path / "partial.npy", {"t_ms": np.zeros(3)}, allow_pickle=True)
    with pytest.raises(KeyError):
        load_result(str(tmp_path / "partial.npy"))
