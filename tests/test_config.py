import json

import pytest

from corticell.config import (
    Biophysics,
    SimConfig,
    load_biophysics,
    load_sim_config,
    quiet_from_env,
    to_dict,
)


def _write(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_defaults():
    cfg = SimConfig()
    assert cfg.dt_ms == 0.025
    assert cfg.spike_thr_mV == 0.0
    params = Biophysics()
    assert params.gna_node == 30000.0
    assert params.spine_area == 0.83
    assert to_dict(params)["ra"] == 150.0


def test_json_overrides(tmp_path):
    params = load_biophysics(_write(tmp_path / "bio.json", {"gna_dend": 30.0, "spine_dens": 0.5}))
    assert params.gna_dend == 30.0
    assert params.spine_dens == 0.5
    assert params.gkv_soma == Biophysics().gkv_soma


def test_json_overrides_on_a_base(tmp_path):
    base = SimConfig(celsius=6.3)
    cfg = load_sim_config(_write(tmp_path / "sim.json", {"tstop_ms": 20.0}), base=base)
    assert cfg.tstop_ms == 20.0
    assert cfg.celsius == 6.3


def test_unknown_key(tmp_path):
    with pytest.raises(ValueError):
        load_biophysics(_write(tmp_path / "bio.json", {"gnabar": 1.0}))


def test_not_an_object(tmp_path):
    with pytest.raises(ValueError):
        load_sim_config(_write(tmp_path / "sim.json", [1, 2, 3]))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_sim_config(str(tmp_path / "nope.json"))


@pytest.mark.parametrize(
    "kwargs",
    [{"dt_ms": 0.0}, {"tstop_ms": -1.0}, {"warmup_ms": -5.0}, {"record_every": 0}],
)
def test_invalid_sim_config(kwargs):
    with pytest.raises(ValueError):
        SimConfig(**kwargs)


def test_invalid_biophysics():
    with pytest.raises(ValueError):
        Biophysics(ra=0.0)
    with pytest.raises(ValueError):
        Biophysics(n_axon_seg=-1)


def test_quiet_from_env(monkeypatch):
    monkeypatch.setenv("CORTICELL_QUIET", "yes")
    assert quiet_from_env()
    monkeypatch.setenv("CORTICELL_QUIET", "0")
    assert not quiet_from_env()
    monkeypatch.delenv("CORTICELL_QUIET")
    assert not quiet_from_env()
