# compartments.py
"""
Discretization of a section tree into compartments.

Every segment of every section becomes one compartment located at the segment
center. Compartments are numbered parents first, so compartment i always has
parent[i] < i (the root compartment has parent -1). The axial conductance of a
parent/child pair is the inverse of the frustum resistance between the two
segment centers; a child section's first compartment attaches to the parent
segment that contains the connection point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np
import scipy.sparse as sp

from corticell.channels import MECHANISMS
from corticell.morphology import Section


@dataclass(frozen=True)
class MechanismLayout:
    name: str
    index: np.ndarray
    params: Dict[str, np.ndarray]


class CompartmentTree:
    def __init__(self, sections: List[Section]):
        self.sections = sections
        self._first: Dict[int, int] = {}

        sec_of: List[Section] = []
        seg_of: List[int] = []
        xs: List[float] = []
        areas: List[float] = []
        cap: List[float] = []
        xyz: List[Tuple[float, float, float]] = []
        diams: List[float] = []
        parent: List[int] = []
        g_axial: List[float] = []

        for sec in sections:
            sec.check_geometry()
            if sec.nseg < 1:
                raise ValueError(f"{sec.name}: nseg must be >= 1, got {sec.nseg}")
            if sec.parent is not None and id(sec.parent) not in self._first:
                raise ValueError(f"{sec.name}: parent {sec.parent.name} must precede its children")
            self._first[id(sec)] = len(sec_of)
            centers = sec.segment_centers()
            edges = np.linspace(0.0, 1.0, sec.nseg + 1)
            for i, xc in enumerate(centers):
                idx = len(sec_of)
                a = sec.area(edges[i], edges[i + 1]) * sec.spine_factor
                sec_of.append(sec)
                seg_of.append(i)
                xs.append(float(xc))
                areas.append(a)
                # uF/cm^2 * um^2 -> nF
                cap.append(sec.cm * a * 1e-5)
                xyz.append(sec.xyz_at(xc))
                diams.append(sec.diam_at(xc))
                if i > 0:
                    parent.append(idx - 1)
                    r = sec.axial_resistance(centers[i - 1], xc)
                elif sec.parent is not None:
                    psec = sec.parent
                    pidx = self.locate(psec, sec.parent_x)
                    pcenter = psec.segment_centers()[pidx - self._first[id(psec)]]
                    parent.append(pidx)
                    r = psec.axial_resistance(pcenter, sec.parent_x) + sec.axial_resistance(0.0, xc)
                else:
                    parent.append(-1)
                    r = np.inf
                g_axial.append(0.0 if not np.isfinite(r) else 1.0 / r)

        self.section_of = sec_of
        self.segment_of = np.asarray(seg_of, dtype=np.int64)
        self.x = np.asarray(xs, dtype=np.float64)
        self.area = np.asarray(areas, dtype=np.float64)  # um^2
        self.capacitance = np.asarray(cap, dtype=np.float64)  # nF
        self.xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)  # um
        self.diam = np.asarray(diams, dtype=np.float64)  # um
        self.parent = np.asarray(parent, dtype=np.int64)
        self.g_axial = np.asarray(g_axial, dtype=np.float64)  # uS, to parent

    @classmethod
    def from_sections(cls, root: Section) -> "CompartmentTree":
        return cls(root.wholetree())

    def __len__(self) -> int:
        return int(self.x.size)

    def __repr__(self) -> str:
        return f"CompartmentTree(sections={len(self.sections)}, compartments={len(self)})"

    def first_index(self, sec: Section) -> int:
        try:
            return self._first[id(sec)]
        except KeyError:
            raise ValueError(f"Section {sec.name} is not part of this tree") from None

    def locate(self, sec: Section, x: float = 0.5) -> int:
        """Compartment index of the segment of sec containing x."""
        return self.first_index(sec) + sec.segment_index(x)

    def indices_of(self, sec: Section) -> np.ndarray:
        start = self.first_index(sec)
        return np.arange(start, start + sec.nseg, dtype=np.int64)

    def laplacian(self) -> sp.csr_matrix:
        """Axial conductance matrix L (uS); (L @ v)_i is the axial current leaving i."""
        n = len(self)
        child = np.flatnonzero(self.parent >= 0)
        par = self.parent[child]
        g = self.g_axial[child]
        rows = np.concatenate([child, par, child, par])
        cols = np.concatenate([par, child, child, par])
        vals = np.concatenate([-g, -g, g, g])
        lap = sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()
        lap.sum_duplicates()
        return lap

    def mechanism_layouts(self) -> List[MechanismLayout]:
        """Group compartments by inserted mechanism with per-compartment parameters."""
        layouts: List[MechanismLayout] = []
        for name, cls in MECHANISMS.items():
            index: List[int] = []
            values: Dict[str, List[float]] = {k: [] for k in cls.defaults}
            for sec in self.sections:
                if name not in sec.mechanisms:
                    continue
                params = dict(cls.defaults)
                params.update(sec.mechanisms[name])
                for idx in self.indices_of(sec):
                    index.append(int(idx))
                    for k in values:
                        values[k].append(params[k])
            if index:
                layouts.append(
                    MechanismLayout(
                        name=name,
                        index=np.asarray(index, dtype=np.int64),
                        params={k: np.asarray(v, dtype=np.float64) for k, v in values.items()},
                    )
                )
        return layouts

    def per_compartment(self, attr: str) -> np.ndarray:
        """Section attribute (e.g. 'ena') broadcast to compartments."""
        return np.asarray([getattr(sec, attr) for sec in self.section_of], dtype=np.float64)

    def labels(self) -> List[str]:
        return [f"{sec.name}({x:.4g})" for sec, x in zip(self.section_of, self.x)]
