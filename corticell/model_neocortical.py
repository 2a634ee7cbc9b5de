# model_neocortical.py
"""
Neocortical neuron model

Builds a multi-compartment cell: soma, dendrites (spine corrected), and an
axon made of hillock, initial segment and alternating myelin / node of Ranvier
sections. Morphologies are generated from templates (branch trees) instead of
reconstruction files; channel densities follow the Biophysics defaults.

Templates
  - ball_and_stick : soma (hh) + passive dendrite, no axon
  - l3_aspiny      : short thin aspiny dendrites
  - l4_stellate    : spiny stellate, radial dendrites
  - l3_pyramid     : apical dendrite with oblique branches, basal dendrites
  - l5_pyramid     : long apical trunk with tuft, basal dendrites
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from corticell.config import Biophysics
from corticell.morphology import (
    DENDRITIC_KINDS,
    Section,
    apply_spine_correction,
    geom_nseg,
    line_section,
)


# =========================
# Morphology templates
# =========================

@dataclass
class Branch:
    """Straight dendritic branch; children start at the distal end."""
    length: float  # um
    diam0: float  # um, proximal
    diam1: float  # um, distal
    direction: Tuple[float, float, float]
    kind: str = "dend"
    children: List["Branch"] = field(default_factory=list)


@dataclass
class Template:
    name: str
    soma_length: float
    soma_diam: float
    branches: List[Branch]
    spiny: bool = True
    axon: bool = True
    classic_hh: bool = False


def _fan(n: int, length: float, diam0: float, diam1: float, z: float = 0.0, kind: str = "dend",
         phase: float = 0.0, children: Optional[Sequence[Branch]] = None) -> List[Branch]:
    """n branches spread evenly around the z axis with elevation component z."""
    out = []
    for i in range(n):
        a = phase + 2.0 * math.pi * i / n
        kids = [Branch(c.length, c.diam0, c.diam1, _turn(c.direction, a), c.kind, list(c.children))
                for c in (children or [])]
        out.append(Branch(length, diam0, diam1, (math.cos(a), math.sin(a), z), kind, kids))
    return out


def _turn(direction: Tuple[float, float, float], angle: float) -> Tuple[float, float, float]:
    x, y, z = direction
    c, s = math.cos(angle), math.sin(angle)
    return (x * c - y * s, x * s + y * c, z)


def _bifurcation(length: float, diam0: float, diam1: float, tilt: float = 0.6) -> List[Branch]:
    return [
        Branch(length, diam0, diam1, (1.0, tilt, 0.2)),
        Branch(length, diam0, diam1, (1.0, -tilt, -0.2)),
    ]


def _apical(trunk: float, trunk_d: Tuple[float, float], n_oblique: int, oblique_len: float,
            tuft_len: float, tuft_d: Tuple[float, float]) -> Branch:
    """Apical trunk (+z) split in pieces with obliques, ending in a tuft."""
    pieces = max(1, n_oblique + 1)
    step = trunk / pieces
    diams = np.linspace(trunk_d[0], trunk_d[1], pieces + 1)
    tuft = [
        Branch(tuft_len, tuft_d[0], tuft_d[1], (0.6, 0.0, 1.0), "apic",
               [Branch(tuft_len * 0.6, tuft_d[1], 0.6, (0.8, 0.4, 1.0), "apic"),
                Branch(tuft_len * 0.6, tuft_d[1], 0.6, (0.8, -0.4, 1.0), "apic")]),
        Branch(tuft_len, tuft_d[0], tuft_d[1], (-0.6, 0.0, 1.0), "apic",
               [Branch(tuft_len * 0.6, tuft_d[1], 0.6, (-0.8, 0.4, 1.0), "apic"),
                Branch(tuft_len * 0.6, tuft_d[1], 0.6, (-0.8, -0.4, 1.0), "apic")]),
    ]
    node = Branch(step, diams[-2], diams[-1], (0.0, 0.0, 1.0), "apic", tuft)
    for i in range(pieces - 2, -1, -1):
        a = 2.0 * math.pi * i / max(1, n_oblique)
        oblique = Branch(oblique_len, 0.9, 0.6, (math.cos(a), math.sin(a), 0.4), "apic")
        node = Branch(step, diams[i], diams[i + 1], (0.0, 0.0, 1.0), "apic", [node, oblique])
    return node


def _templates() -> Dict[str, Template]:
    basal_l5 = _fan(6, 60.0, 2.0, 1.4, z=-0.3, children=_bifurcation(120.0, 1.2, 0.6))
    basal_l3 = _fan(5, 45.0, 1.6, 1.1, z=-0.3, children=_bifurcation(90.0, 1.0, 0.5))
    return {
        "ball_and_stick": Template(
            name="ball_and_stick",
            soma_length=12.6157,
            soma_diam=12.6157,
            branches=[Branch(200.0, 1.0, 1.0, (0.0, 0.0, 1.0))],
            spiny=False,
            axon=False,
            classic_hh=True,
        ),
        "l3_aspiny": Template(
            name="l3_aspiny",
            soma_length=15.0,
            soma_diam=15.0,
            branches=_fan(7, 30.0, 1.0, 0.7, z=0.1, children=_bifurcation(70.0, 0.6, 0.4, tilt=0.8)),
            spiny=False,
        ),
        "l4_stellate": Template(
            name="l4_stellate",
            soma_length=18.0,
            soma_diam=18.0,
            branches=_fan(6, 40.0, 1.5, 1.0, z=0.2, children=_bifurcation(110.0, 0.9, 0.5, tilt=0.7)),
        ),
        "l3_pyramid": Template(
            name="l3_pyramid",
            soma_length=20.0,
            soma_diam=18.0,
            branches=[_apical(260.0, (3.0, 1.6), 3, 90.0, 100.0, (1.2, 0.8))] + basal_l3,
        ),
        "l5_pyramid": Template(
            name="l5_pyramid",
            soma_length=25.0,
            soma_diam=23.0,
            branches=[_apical(700.0, (5.0, 2.0), 5, 140.0, 180.0, (1.8, 1.0))] + basal_l5,
        ),
    }


TEMPLATES = tuple(_templates())


def get_template(name: str) -> Template:
    templates = _templates()
    if name not in templates:
        raise ValueError(f"Unknown cell template '{name}'. Available: {sorted(templates)}")
    return templates[name]


# =========================
# Cell
# =========================

class NeocorticalCell:
    def __init__(
        self,
        template: str = "l5_pyramid",
        params: Optional[Biophysics] = None,
        position: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        axon_direction: Tuple[float, float, float] = (0.0, 0.0, -1.0),
        verbose: bool = False,
    ):
        """
        Args:
            template: morphology template name (see TEMPLATES)
            params: Biophysics parameters (defaults if None)
            position: soma center (um)
            axon_direction: direction of the axon leaving the soma
        """
        self.template = get_template(template)
        self.params = params or Biophysics()
        self.soma: Section
        self.dendrites: List[Section] = []
        self.axon: List[Section] = []
        self.nodes: List[Section] = []
        self.myelin: List[Section] = []
        self.hill: Optional[Section] = None
        self.iseg: Optional[Section] = None

        self._build_morphology(position)
        ra, cm = (100.0, 1.0) if self.template.classic_hh else (self.params.ra, self.params.c_m)
        for sec in [self.soma] + self.dendrites:
            sec.Ra = ra
            sec.cm = cm
        if self.template.spiny:
            apply_spine_correction(self.dendrites, self.params.spine_area, self.params.spine_dens)
        else:
            apply_spine_correction(self.dendrites, self.params.spine_area, 0.0)
        geom_nseg([self.soma] + self.dendrites, self.params.d_lambda, self.params.lambda_freq)
        if self.template.axon:
            create_axon(self, self.params, axon_direction)
        if self.template.classic_hh:
            init_classic_hh(self)
        else:
            init_biophysics(self, self.params)

        if verbose:
            print(f"Cell '{self.template.name}': {len(self.all)} sections "
                  f"({len(self.dendrites)} dendritic, {len(self.axon)} axonal), "
                  f"{sum(sec.nseg for sec in self.all)} segments", flush=True)

    def __repr__(self) -> str:
        return f"NeocorticalCell({self.template.name!r}, sections={len(self.all)})"

    @property
    def all(self) -> List[Section]:
        return self.soma.wholetree()

    def _build_morphology(self, position: Tuple[float, float, float]) -> None:
        t = self.template
        x, y, z = position
        soma = Section("soma", "soma")
        soma.pt3dadd(x, y, z - t.soma_length / 2.0, t.soma_diam)
        soma.pt3dadd(x, y, z + t.soma_length / 2.0, t.soma_diam)
        self.soma = soma

        counter = {"dend": 0, "apic": 0}

        def grow(branch: Branch, parent: Section, parent_x: float, start: Tuple[float, float, float]) -> None:
            name = f"{branch.kind}[{counter[branch.kind]}]"
            counter[branch.kind] += 1
            n_pts = max(2, int(branch.length // 20.0) + 1)
            sec = line_section(name, branch.kind, start, branch.direction, branch.length,
                               branch.diam0, branch.diam1, n_points=n_pts)
            sec.connect(parent, parent_x)
            self.dendrites.append(sec)
            end = sec.xyz_at(1.0)
            for child in branch.children:
                grow(child, sec, 1.0, end)

        center = soma.xyz_at(0.5)
        for branch in t.branches:
            u = np.asarray(branch.direction, dtype=np.float64)
            u = u / np.linalg.norm(u)
            # start on the soma surface along the branch direction
            r = 0.5 * min(t.soma_diam, t.soma_length)
            start = tuple(np.asarray(center) + u * r)
            grow(branch, soma, 0.5, start)  # type: ignore[arg-type]

    # =========================
    # Queries / placement
    # =========================

    def section(self, name: str) -> Section:
        for sec in self.all:
            if sec.name == name:
                return sec
        raise KeyError(f"No section named '{name}'")

    def sections_of_kind(self, *kinds: str) -> List[Section]:
        return [sec for sec in self.all if sec.kind in kinds]

    def soma_location(self) -> Tuple[float, float, float]:
        return self.soma.xyz_at(0.5)

    def translate(self, dx: float, dy: float, dz: float) -> None:
        for sec in self.all:
            sec.translate(dx, dy, dz)

    def move_soma_to(self, x: float, y: float, z: float) -> None:
        sx, sy, sz = self.soma_location()
        self.translate(x - sx, y - sy, z - sz)

    def rotate_z(self, theta: float) -> None:
        """Rotate the whole cell about the z axis through the soma center."""
        sx, sy, _ = self.soma_location()
        for sec in self.all:
            sec.rotate_z(theta, origin=(sx, sy))

    def total_area(self) -> float:
        return float(sum(sec.area() * sec.spine_factor for sec in self.all))


# =========================
# Axon
# =========================

def soma_equiv_diam(soma: Section) -> float:
    """sqrt(area / 4 pi) of the soma; the axon diameters scale with it."""
    return math.sqrt(soma.area() / (4.0 * math.pi))


def create_axon(cell: NeocorticalCell, params: Biophysics,
                direction: Tuple[float, float, float] = (0.0, 0.0, -1.0)) -> List[Section]:
    """Hillock, initial segment and n_axon_seg myelin / node pairs attached to soma(0.5)."""
    soma = cell.soma
    iseg_diam = soma_equiv_diam(soma) / 10.0
    u = np.asarray(direction, dtype=np.float64)
    if np.linalg.norm(u) == 0:
        raise ValueError("axon direction must be non-zero")
    u = u / np.linalg.norm(u)
    r = 0.5 * min(soma.diam_at(0.5), soma.L)
    start = tuple(np.asarray(soma.xyz_at(0.5)) + u * r)

    hill = line_section("hill", "hill", start, u, params.hill_length,
                        params.hill_taper * iseg_diam, iseg_diam, n_points=6)
    hill.nseg = 5
    hill.connect(soma, 0.5)

    iseg = line_section("iseg", "iseg", hill.xyz_at(1.0), u, params.iseg_length, iseg_diam)
    iseg.nseg = 5
    iseg.connect(hill, 1.0)

    sections = [hill, iseg]
    parent = iseg
    myelin: List[Section] = []
    nodes: List[Section] = []
    for i in range(int(params.n_axon_seg)):
        m = line_section(f"myelin[{i}]", "myelin", parent.xyz_at(1.0), u, params.myelin_length, iseg_diam)
        m.nseg = 5
        m.connect(parent, 1.0)
        nd = line_section(f"node[{i}]", "node", m.xyz_at(1.0), u, params.node_length,
                          iseg_diam * params.node_diam_ratio)
        nd.nseg = 1
        nd.connect(m, 1.0)
        myelin.append(m)
        nodes.append(nd)
        sections.extend([m, nd])
        parent = nd

    cell.hill, cell.iseg = hill, iseg
    cell.myelin, cell.nodes = myelin, nodes
    cell.axon = sections
    return sections


# =========================
# Biophysics
# =========================

def init_biophysics(cell: NeocorticalCell, params: Biophysics) -> None:
    """Passive membrane, Na / K / Ca channels and calcium buffering per section kind."""
    p = params
    for sec in cell.all:
        sec.Ra = p.ra
        sec.cm = p.c_m
        sec.insert("pas", g=1.0 / p.rm, e=p.v_init)
        sec.insert("na", gbar=p.gna_dend, vshift=p.vshift_na)
        sec.ena = p.Ena
        sec.ek = p.Ek
        sec.eca = p.Eca

    for sec in cell.myelin:
        sec.cm = p.cm_myelin
    for sec in cell.nodes:
        sec.insert("pas", g=p.g_pas_node)
        sec.insert("na", gbar=p.gna_node)
        sec.insert("kv", gbar=p.gkv_axon)
    for sec in (cell.hill, cell.iseg):
        if sec is not None:
            sec.insert("na", gbar=p.gna_node)
            sec.insert("kv", gbar=p.gkv_axon)

    for sec in cell.dendrites:
        if sec.kind in DENDRITIC_KINDS:
            sec.insert("km", gbar=p.gkm)
            sec.insert("kca", gbar=p.gkca)
            sec.insert("ca", gbar=p.gca)
            sec.insert("cad")

    soma = cell.soma
    soma.insert("na", gbar=p.gna_soma)
    soma.insert("kv", gbar=p.gkv_soma)
    soma.insert("km", gbar=p.gkm_soma)
    soma.insert("kca", gbar=p.gkca_soma)
    soma.insert("ca", gbar=p.gca_soma)
    soma.insert("cad")


def init_classic_hh(cell: NeocorticalCell) -> None:
    """Squid-axon soma with a passive dendrite."""
    for sec in cell.all:
        sec.Ra = 100.0
        sec.cm = 1.0
    cell.soma.insert("hh", gnabar=0.12, gkbar=0.036, gl=0.0003, el=-54.3)
    for sec in cell.dendrites:
        sec.insert("pas", g=0.001, e=-65.0)
