import math

import numpy as np
import pytest

from corticell.compartments import CompartmentTree
from corticell.config import SimConfig
from corticell.model_neocortical import NeocorticalCell
from corticell.morphology import line_section
from corticell.solver import Simulation
from corticell.stimulus import (
    E_FACTOR,
    GridField,
    IClamp,
    PointSource,
    UniformField,
    biphasic_pulse,
    sampled_waveform,
    sine_wave,
    square_pulse,
)


def _vertical_cable(nseg=51):
    sec = line_section("cable", "dend", (0, 0, -500.0), (0, 0, 1), 1000.0, 2.0)
    sec.nseg = nseg
    sec.Ra = 100.0
    sec.insert("pas", g=1e-3, e=-65.0)
    return sec


def test_waveforms():
    sq = square_pulse(1.0, 2.0, amp=3.0)
    assert [sq(0.5), sq(1.0), sq(2.9), sq(3.0)] == [0.0, 3.0, 3.0, 0.0]

    bi = biphasic_pulse(1.0, 0.5, gap_ms=0.25, amp=2.0)
    assert [bi(0.9), bi(1.2), bi(1.6), bi(1.9), bi(2.3)] == [0.0, -2.0, 0.0, 2.0, 0.0]

    sw = sine_wave(1000.0, delay_ms=1.0, dur_ms=2.0)
    assert sw(0.5) == 0.0
    assert sw(1.25) == pytest.approx(1.0)
    assert sw(3.5) == 0.0

    sm = sampled_waveform([0.0, 1.0, 2.0], [0.0, 10.0, 0.0])
    assert sm(0.5) == pytest.approx(5.0)
    assert sm(2.5) == 0.0
    with pytest.raises(ValueError):
        sampled_waveform([0.0, 0.0], [1.0, 2.0])


def test_iclamp_window():
    sec = _vertical_cable(nseg=1)
    clamp = IClamp(sec, 0.5, delay=1.0, dur=2.0, amp=0.3)
    assert [clamp.current(0.9), clamp.current(1.0), clamp.current(3.0)] == [0.0, 0.3, 0.0]
    with pytest.raises(ValueError):
        IClamp(sec, 0.5, delay=0.0, dur=-1.0, amp=1.0)


def test_uniform_field_potential():
    sec = _vertical_cable(nseg=5)
    tree = CompartmentTree.from_sections(sec)
    field = UniformField((0.0, 0.0, 100.0), waveform=square_pulse(1.0, 1.0))
    field.bind(tree)
    np.testing.assert_allclose(field.potential(1.5), -100.0 * tree.xyz[:, 2] * E_FACTOR)
    np.testing.assert_allclose(field.potential(0.5), 0.0)
    with pytest.raises(ValueError):
        UniformField((1.0, 2.0))


def test_uniform_field_polarizes_cable_ends():
    sec = _vertical_cable()
    sim = Simulation(sec, SimConfig(tstop_ms=20.0, v_init_mV=-65.0))
    top = sim.record(sec, 1.0, "top")
    bottom = sim.record(sec, 0.0, "bottom")
    sim.add_source(UniformField((0.0, 0.0, 100.0)))
    result = sim.run()
    v_top = result.trace(top)[-1] + 65.0
    v_bottom = result.trace(bottom)[-1] + 65.0
    # the end facing the low potential (+z) depolarizes
    assert v_top > 1.0
    assert v_bottom < -1.0
    assert v_top == pytest.approx(-v_bottom, rel=1e-6)
    assert result.trace("soma")[-1] == pytest.approx(-65.0, abs=1e-6)


def test_point_source_falls_off_with_distance():
    sec = line_section("cable", "dend", (100.0, 0, 0), (1, 0, 0), 200.0, 2.0)
    sec.nseg = 4
    tree = CompartmentTree.from_sections(sec)
    src = PointSource((0.0, 0.0, 0.0), current_uA=-10.0, sigma=0.3)
    src.bind(tree)
    phi = src.potential(0.0)
    r = np.linalg.norm(tree.xyz, axis=1)
    np.testing.assert_allclose(phi * r, phi[0] * r[0])
    assert np.all(phi < 0)
    assert phi[0] == pytest.approx(-10.0 / (4.0 * math.pi * 0.3 * r[0]) * 1e3)
    with pytest.raises(ValueError):
        PointSource((0, 0, 0), 1.0, sigma=0.0)


def test_point_source_minimum_distance():
    sec = line_section("cable", "dend", (0.0, 0, 0), (1, 0, 0), 1.0, 2.0)
    tree = CompartmentTree.from_sections(sec)
    src = PointSource((0.5, 0.0, 0.0), current_uA=1.0, min_distance_um=5.0)
    src.bind(tree)
    assert src.potential(0.0)[0] == pytest.approx(1.0 / (4.0 * math.pi * 0.3 * 5.0) * 1e3)


def test_grid_field_time_index():
    coords = np.zeros((1, 3))
    field = GridField(coords, np.ones((3, 1, 5)), dt_ms=0.1, onset_ms=1.0)
    assert field.n_times == 5
    assert field.time_index(0.5) == -1
    assert field.time_index(1.0) == 0
    assert field.time_index(1.25) == 2
    assert field.time_index(1.49) == 4
    assert field.time_index(1.5) == -1


def test_grid_field_validation():
    with pytest.raises(ValueError):
        GridField(np.zeros((4, 2)), np.zeros((3, 4, 2)), dt_ms=0.1)
    with pytest.raises(ValueError):
        GridField(np.zeros((4, 3)), np.zeros((3, 5, 2)), dt_ms=0.1)
    with pytest.raises(ValueError):
        GridField(np.zeros((4, 3)), np.zeros((3, 4, 2)), dt_ms=0.0)


def test_grid_field_two_components_map_to_x_and_z():
    values = np.stack([np.full((2, 3), 1.0), np.full((2, 3), 2.0)])
    field = GridField(np.zeros((2, 3)), values, dt_ms=0.1)
    np.testing.assert_allclose(field.values[0], 1.0)
    np.testing.assert_allclose(field.values[1], 0.0)
    np.testing.assert_allclose(field.values[2], 2.0)


def test_constant_grid_field_matches_uniform_field():
    soma = line_section("soma", "soma", (0, 0, -10.0), (0, 0, 1), 20.0, 20.0)
    dend = line_section("dend", "dend", (0, 0, 10.0), (0.3, 0.2, 1.0), 300.0, 2.0)
    dend.nseg = 7
    dend.connect(soma, 1.0)
    side = line_section("side", "dend", (0, 0, 0), (1.0, -0.5, 0.0), 150.0, 1.0)
    side.nseg = 5
    side.connect(soma, 0.5)
    tree = CompartmentTree.from_sections(soma)

    e = np.array([30.0, -20.0, 50.0])
    grid = np.stack(np.meshgrid(*[np.linspace(-400, 400, 5)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
    values = np.broadcast_to(e[:, None, None], (3, grid.shape[0], 4)).copy()
    gf = GridField(grid, values, dt_ms=0.5, scale=2.0)
    gf.bind(tree)
    uf = UniformField(tuple(2.0 * e), origin=tuple(tree.xyz[0]))
    uf.bind(tree)
    np.testing.assert_allclose(gf.potential(0.7), uf.potential(0.7), atol=1e-12)
    np.testing.assert_allclose(gf.potential(2.0), 0.0)


def test_grid_field_from_files(tmp_path):
    coords_m = np.array([[0.0, 0.0, 0.0], [1e-3, 0.0, 0.0]])
    values = np.ones((3, 2, 3))
    np.save(tmp_path / "coords.npy", coords_m)
    np.save(tmp_path / "values.npy", values)
    field = GridField.from_files(str(tmp_path / "values.npy"), str(tmp_path / "coords.npy"), dt_ms=0.1,
                                 unit_scale=2.0)
    np.testing.assert_allclose(field.coords_um[1], [1000.0, 0.0, 0.0])
    np.testing.assert_allclose(field.values, 2.0)
    with pytest.raises(FileNotFoundError):
        GridField.from_files(str(tmp_path / "missing.npy"), str(tmp_path / "coords.npy"), dt_ms=0.1)


def _l5_with_node_detector():
    cell = NeocorticalCell("l5_pyramid")
    sim = Simulation(cell, SimConfig(tstop_ms=10.0, warmup_ms=50.0))
    sim.spike_detector(cell.nodes[-1], 0.5, label="node")
    return cell, sim


@pytest.mark.parametrize("ez, fires", [(-200.0, True), (-50.0, False)])
def test_field_pulse_fires_l5_pyramid_above_threshold(ez, fires):
    cell, sim = _l5_with_node_detector()
    sim.add_source(UniformField((0.0, 0.0, ez), waveform=square_pulse(1.0, 0.2), origin=cell.soma_location()))
    result = sim.run()
    if fires:
        assert result.spike_count("node") >= 1
        assert result.spike_count("soma") >= 1
    else:
        assert result.spike_count("node") == 0
        assert result.spike_count("soma") == 0


@pytest.mark.parametrize("current_uA, fires", [(-20.0, True), (-0.5, False)])
def test_cathodic_point_source_near_axon_terminal(current_uA, fires):
    cell, sim = _l5_with_node_detector()
    electrode = np.asarray(cell.nodes[-1].xyz_at(0.5)) + np.array([50.0, 0.0, 0.0])
    sim.add_source(PointSource(tuple(electrode), current_uA, waveform=square_pulse(1.0, 0.2)))
    result = sim.run()
    if fires:
        assert result.spike_count("node") >= 1
        assert result.spike_count("soma") >= 1
    else:
        assert result.spike_count("node") == 0
        assert result.spike_count("soma") == 0


def test_constant_grid_field_run_matches_uniform_field_run(soma_dend):
    soma, dend = soma_dend
    soma.insert("pas", g=1e-3, e=-65.0)
    dend.insert("pas", g=1e-3, e=-65.0)
    e = np.array([0.0, 0.0, 80.0])
    grid = np.stack(np.meshgrid(*[np.linspace(-200, 200, 5)] * 3, indexing="ij"), axis=-1).reshape(-1, 3)
    values = np.broadcast_to(e[:, None, None], (3, grid.shape[0], 40)).copy()

    traces = []
    for source in (GridField(grid, values, dt_ms=0.5), UniformField(tuple(e), origin=soma.xyz_at(0.5))):
        sim = Simulation(soma, SimConfig(tstop_ms=5.0, v_init_mV=-65.0))
        sim.record(dend, 1.0, "tip")
        sim.add_source(source)
        traces.append(sim.run().trace("tip"))
    np.testing.assert_allclose(traces[0], traces[1], atol=1e-9)
    assert traces[0][-1] > -65.0 + 0.2
