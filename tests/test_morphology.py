import math

import numpy as np
import pytest

from corticell.morphology import (
    Section,
    apply_spine_correction,
    geom_nseg,
    line_section,
    total_area,
)


def test_cylinder_area_and_length(cylinder):
    assert cylinder.L == pytest.approx(100.0)
    assert cylinder.area() == pytest.approx(math.pi * 2.0 * 100.0)
    assert cylinder.area(0.0, 0.25) == pytest.approx(math.pi * 2.0 * 25.0)


def test_cylinder_axial_resistance(cylinder):
    cylinder.Ra = 100.0
    # Ra * L / (pi r^2): 100 Ohm-cm * 1e-2 cm / (pi * 1e-8 cm^2) = 31.83 MOhm
    assert cylinder.axial_resistance(0.0, 1.0) == pytest.approx(1.0 / (math.pi * 1e-2), rel=1e-9)
    assert cylinder.axial_resistance(0.5, 1.0) == pytest.approx(0.5 * cylinder.axial_resistance(0.0, 1.0))


def test_cone_area():
    sec = line_section("cone", "dend", (0, 0, 0), (0, 0, 1), 30.0, 4.0, 2.0)
    slant = math.sqrt(30.0 ** 2 + 1.0 ** 2)
    assert sec.area() == pytest.approx(math.pi * (2.0 + 1.0) * slant)
    assert sec.diam_at(0.5) == pytest.approx(3.0)


def test_interpolation_follows_the_path():
    sec = Section("bent", "dend")
    sec.pt3dadd(0, 0, 0, 1)
    sec.pt3dadd(10, 0, 0, 1)
    sec.pt3dadd(10, 10, 0, 3)
    assert sec.L == pytest.approx(20.0)
    assert sec.xyz_at(0.75) == pytest.approx((10.0, 5.0, 0.0))
    assert sec.diam_at(0.75) == pytest.approx(2.0)
    np.testing.assert_allclose(sec.arc3d(), [0.0, 10.0, 20.0])


def test_geometry_checks():
    sec = Section("empty", "dend")
    with pytest.raises(ValueError):
        sec.check_geometry()
    sec.pt3dadd(0, 0, 0, 1)
    sec.pt3dadd(0, 0, 0, 1)
    with pytest.raises(ValueError):
        sec.check_geometry()
    with pytest.raises(ValueError):
        Section("x", "axon_hillock")


def test_connect_and_loops():
    a = line_section("a", "dend", (0, 0, 0), (1, 0, 0), 10.0, 1.0)
    b = line_section("b", "dend", (10, 0, 0), (1, 0, 0), 10.0, 1.0)
    c = line_section("c", "dend", (20, 0, 0), (1, 0, 0), 10.0, 1.0)
    b.connect(a, 1.0)
    c.connect(b, 1.0)
    assert c.root() is a
    assert a.wholetree() == [a, b, c]
    assert c.depth() == 2
    with pytest.raises(ValueError):
        a.connect(c)
    with pytest.raises(ValueError):
        a.connect(a)

    c.connect(a, 0.5)
    assert c not in b.children
    assert c.parent is a and c.parent_x == 0.5


def test_insert_validates_names_and_params(cylinder):
    cylinder.insert("pas", g=2e-4)
    cylinder.insert("pas", e=-65.0)
    assert cylinder.mechanisms["pas"] == {"g": 2e-4, "e": -65.0}
    with pytest.raises(ValueError):
        cylinder.insert("nap")
    with pytest.raises(ValueError):
        cylinder.insert("pas", gbar=1.0)
    with pytest.raises(ValueError):
        cylinder.set_param("kv", "gbar", 1.0)


def test_uninsert(cylinder):
    cylinder.insert("pas")
    cylinder.insert("hh")
    cylinder.uninsert("hh")
    assert not cylinder.has("hh")
    assert cylinder.has("pas")
    cylinder.uninsert("hh")
    assert list(cylinder.mechanisms) == ["pas"]


def test_pt3dchange_reshapes_section(cylinder):
    assert cylinder.n3d() == 2
    cylinder.pt3dchange(1, 50.0, 0.0, 0.0, 4.0)
    assert cylinder.n3d() == 2
    assert cylinder.L == pytest.approx(50.0)
    slant = math.sqrt(50.0 ** 2 + 1.0 ** 2)
    assert cylinder.area() == pytest.approx(math.pi * (1.0 + 2.0) * slant)
    np.testing.assert_allclose(cylinder.points[1], [50.0, 0.0, 0.0, 4.0])
    with pytest.raises(IndexError):
        cylinder.pt3dchange(5, 0.0, 0.0, 0.0, 1.0)


def test_segments(cylinder):
    cylinder.nseg = 5
    np.testing.assert_allclose(cylinder.segment_centers(), [0.1, 0.3, 0.5, 0.7, 0.9])
    assert cylinder.segment_index(0.0) == 0
    assert cylinder.segment_index(0.45) == 2
    assert cylinder.segment_index(1.0) == 4


def test_geom_nseg_d_lambda_rule():
    long_dend = line_section("d", "dend", (0, 0, 0), (1, 0, 0), 1000.0, 1.0)
    long_dend.Ra = 100.0
    long_dend.cm = 1.0
    # lambda_100 = 1e5 * sqrt(1 / (4 pi 100 100 1)) = 282.1 um -> 35.45 pieces
    assert long_dend.lambda_f(100.0) == pytest.approx(282.09, rel=1e-4)
    short = line_section("s", "dend", (0, 0, 0), (1, 0, 0), 10.0, 1.0)
    geom_nseg([long_dend, short])
    assert long_dend.nseg == 37
    assert short.nseg == 1
    with pytest.raises(ValueError):
        geom_nseg([short], d_lambda=0.0)


def test_spine_correction(cylinder):
    a = cylinder.area()
    apply_spine_correction([cylinder], spine_area=0.83, spine_dens=1.0)
    f = (100.0 * 0.83 + a) / a
    assert cylinder.spine_factor == pytest.approx(f)
    assert cylinder.electrical_length == pytest.approx(100.0 * f ** (2.0 / 3.0))
    assert cylinder.electrical_diam == pytest.approx(2.0 * f ** (1.0 / 3.0))
    assert total_area([cylinder]) == pytest.approx(a + 83.0)
    # axial resistance is untouched
    cylinder.Ra = 100.0
    assert cylinder.axial_resistance(0.0, 1.0) == pytest.approx(1.0 / (math.pi * 1e-2))


def test_translate_and_rotate(cylinder):
    cylinder.translate(1.0, 2.0, 3.0)
    assert cylinder.xyz_at(0.0) == pytest.approx((1.0, 2.0, 3.0))
    cylinder.rotate_z(math.pi / 2.0, origin=(1.0, 2.0))
    assert cylinder.xyz_at(1.0) == pytest.approx((1.0, 102.0, 3.0))
    assert cylinder.L == pytest.approx(100.0)
