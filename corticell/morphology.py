# morphology.py
"""
Section geometry for compartmental cell models.

A Section is an unbranched cable described by 3-D points (x, y, z, diam) in um,
connected to a parent section at a normalized position. Geometry (arc length,
membrane area, axial resistance) is computed from the truncated cones between
consecutive points, the same way pt3d based sections are handled in
compartmental simulators.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from corticell.channels import MECHANISMS


SECTION_KINDS = ("soma", "dend", "apic", "hill", "iseg", "myelin", "node")
DENDRITIC_KINDS = ("dend", "apic")
AXONAL_KINDS = ("hill", "iseg", "myelin", "node")

# Default electrical properties of a freshly created section
DEFAULT_RA = 35.4  # Ohm-cm
DEFAULT_CM = 1.0  # uF/cm^2
DEFAULT_ENA = 50.0  # mV
DEFAULT_EK = -77.0  # mV
DEFAULT_ECA = 140.0  # mV


def _clamp01(x: float) -> float:
    return min(1.0, max(0.0, float(x)))


class Section:
    def __init__(self, name: str, kind: str = "dend"):
        if kind not in SECTION_KINDS:
            raise ValueError(f"Unknown section kind '{kind}'. Expected one of {SECTION_KINDS}")
        self.name = name
        self.kind = kind
        self.nseg = 1
        self.Ra = DEFAULT_RA
        self.cm = DEFAULT_CM
        self.ena = DEFAULT_ENA
        self.ek = DEFAULT_EK
        self.eca = DEFAULT_ECA
        self.spine_factor = 1.0
        self.mechanisms: Dict[str, Dict[str, float]] = {}
        self.parent: Optional[Section] = None
        self.parent_x = 1.0
        self.children: List[Section] = []
        self._pts: List[Tuple[float, float, float, float]] = []

    def __repr__(self) -> str:
        return f"Section({self.name!r}, kind={self.kind!r}, nseg={self.nseg})"

    # =========================
    # 3-D points
    # =========================

    def pt3dadd(self, x: float, y: float, z: float, diam: float) -> None:
        self._pts.append((float(x), float(y), float(z), float(diam)))

    def pt3dclear(self) -> None:
        self._pts = []

    def pt3dchange(self, i: int, x: float, y: float, z: float, diam: float) -> None:
        self._pts[i] = (float(x), float(y), float(z), float(diam))

    def n3d(self) -> int:
        return len(self._pts)

    @property
    def points(self) -> np.ndarray:
        """(n3d, 4) array of x, y, z, diam."""
        if not self._pts:
            return np.zeros((0, 4), dtype=np.float64)
        return np.asarray(self._pts, dtype=np.float64)

    def arc3d(self) -> np.ndarray:
        pts = self.points
        if pts.shape[0] == 0:
            return np.zeros(0, dtype=np.float64)
        steps = np.linalg.norm(np.diff(pts[:, :3], axis=0), axis=1)
        return np.concatenate([[0.0], np.cumsum(steps)])

    @property
    def L(self) -> float:
        arc = self.arc3d()
        return float(arc[-1]) if arc.size else 0.0

    def mean_diam(self) -> float:
        """Length weighted mean diameter."""
        pts = self.points
        if pts.shape[0] < 2:
            return float(pts[0, 3]) if pts.shape[0] else 0.0
        arc = self.arc3d()
        lengths = np.diff(arc)
        if arc[-1] <= 0:
            return float(np.mean(pts[:, 3]))
        mids = 0.5 * (pts[:-1, 3] + pts[1:, 3])
        return float(np.sum(mids * lengths) / arc[-1])

    def check_geometry(self) -> None:
        pts = self.points
        if pts.shape[0] < 2:
            raise ValueError(f"{self.name}: at least two 3-D points are required, got {pts.shape[0]}")
        if self.L <= 0:
            raise ValueError(f"{self.name}: section has zero length")
        if np.any(pts[:, 3] <= 0):
            raise ValueError(f"{self.name}: diameters must be positive")

    def xyz_at(self, x: float) -> Tuple[float, float, float]:
        """3-D position at normalized arc position x, interpolated along the path."""
        pts = self.points
        if pts.shape[0] == 0:
            return 0.0, 0.0, 0.0
        arc = self.arc3d()
        target = _clamp01(x) * arc[-1]
        return (
            float(np.interp(target, arc, pts[:, 0])),
            float(np.interp(target, arc, pts[:, 1])),
            float(np.interp(target, arc, pts[:, 2])),
        )

    def diam_at(self, x: float) -> float:
        pts = self.points
        if pts.shape[0] == 0:
            return 0.0
        arc = self.arc3d()
        return float(np.interp(_clamp01(x) * arc[-1], arc, pts[:, 3]))

    def _frustums(self, x0: float, x1: float) -> Iterator[Tuple[float, float, float]]:
        """Yield (length, d0, d1) of the cone pieces between normalized x0 and x1."""
        arc = self.arc3d()
        diams = self.points[:, 3]
        a, b = sorted((_clamp01(x0) * arc[-1], _clamp01(x1) * arc[-1]))
        cuts = [a] + [s for s in arc if a < s < b] + [b]
        for s0, s1 in zip(cuts[:-1], cuts[1:]):
            length = s1 - s0
            if length <= 0:
                continue
            yield length, float(np.interp(s0, arc, diams)), float(np.interp(s1, arc, diams))

    def area(self, x0: float = 0.0, x1: float = 1.0) -> float:
        """Lateral membrane area (um^2) between x0 and x1, without spine correction."""
        total = 0.0
        for length, d0, d1 in self._frustums(x0, x1):
            r0, r1 = 0.5 * d0, 0.5 * d1
            total += math.pi * (r0 + r1) * math.sqrt(length * length + (r1 - r0) ** 2)
        return total

    def axial_resistance(self, x0: float, x1: float) -> float:
        """Axial resistance (MOhm) between x0 and x1."""
        total = 0.0
        for length, d0, d1 in self._frustums(x0, x1):
            # Ohm-cm * um / um^2 -> 1e4 Ohm ; 1e-2 converts to MOhm
            total += 4.0 * self.Ra * length / (math.pi * d0 * d1) * 1e-2
        return total

    # =========================
    # Electrical geometry
    # =========================

    @property
    def electrical_length(self) -> float:
        """Length after folding spine membrane in (L * F^(2/3))."""
        return self.L * self.spine_factor ** (2.0 / 3.0)

    @property
    def electrical_diam(self) -> float:
        return self.mean_diam() * self.spine_factor ** (1.0 / 3.0)

    def lambda_f(self, freq: float = 100.0) -> float:
        """AC length constant (um) at freq (Hz)."""
        d = self.electrical_diam
        return 1e5 * math.sqrt(d / (4.0 * math.pi * freq * self.Ra * self.cm))

    def segment_centers(self) -> np.ndarray:
        return (np.arange(self.nseg, dtype=np.float64) + 0.5) / self.nseg

    def segment_index(self, x: float) -> int:
        return min(int(_clamp01(x) * self.nseg), self.nseg - 1)

    # =========================
    # Topology
    # =========================

    def connect(self, parent: "Section", x: float = 1.0) -> "Section":
        """Attach the 0-end of this section to parent(x)."""
        if parent is self:
            raise ValueError(f"{self.name}: cannot connect a section to itself")
        node: Optional[Section] = parent
        while node is not None:
            if node is self:
                raise ValueError(f"{self.name}: connecting to {parent.name} would create a loop")
            node = node.parent
        if self.parent is not None:
            self.parent.children.remove(self)
        self.parent = parent
        self.parent_x = _clamp01(x)
        parent.children.append(self)
        return self

    def root(self) -> "Section":
        sec = self
        while sec.parent is not None:
            sec = sec.parent
        return sec

    def subtree(self) -> List["Section"]:
        out: List[Section] = []
        stack = [self]
        while stack:
            sec = stack.pop()
            out.append(sec)
            stack.extend(reversed(sec.children))
        return out

    def wholetree(self) -> List["Section"]:
        return self.root().subtree()

    def depth(self) -> int:
        n = 0
        sec = self
        while sec.parent is not None:
            sec = sec.parent
            n += 1
        return n

    # =========================
    # Mechanisms
    # =========================

    def insert(self, mechanism: str, **params: float) -> None:
        if mechanism not in MECHANISMS:
            raise ValueError(f"Unknown mechanism '{mechanism}'. Available: {sorted(MECHANISMS)}")
        unknown = set(params) - set(MECHANISMS[mechanism].defaults)
        if unknown:
            raise ValueError(f"{mechanism}: unknown parameter(s) {sorted(unknown)}")
        self.mechanisms.setdefault(mechanism, {}).update({k: float(v) for k, v in params.items()})

    def uninsert(self, mechanism: str) -> None:
        self.mechanisms.pop(mechanism, None)

    def has(self, mechanism: str) -> bool:
        return mechanism in self.mechanisms

    def set_param(self, mechanism: str, name: str, value: float) -> None:
        if mechanism not in self.mechanisms:
            raise ValueError(f"{self.name}: mechanism '{mechanism}' is not inserted")
        self.insert(mechanism, **{name: value})

    # =========================
    # Placement
    # =========================

    def translate(self, dx: float, dy: float, dz: float) -> None:
        self._pts = [(x + dx, y + dy, z + dz, d) for x, y, z, d in self._pts]

    def rotate_z(self, theta: float, origin: Tuple[float, float] = (0.0, 0.0)) -> None:
        """Rotate the 3-D points about the z axis through origin."""
        c = math.cos(theta)
        s = math.sin(theta)
        ox, oy = origin
        rotated = []
        for x, y, z, d in self._pts:
            x0, y0 = x - ox, y - oy
            rotated.append((ox + x0 * c - y0 * s, oy + x0 * s + y0 * c, z, d))
        self._pts = rotated


# =========================
# Tree-wide helpers
# =========================

def geom_nseg(sections: Iterable[Section], d_lambda: float = 0.1, freq: float = 100.0) -> None:
    """Set nseg so that no segment is longer than d_lambda of the AC length constant."""
    if d_lambda <= 0:
        raise ValueError(f"d_lambda must be positive, got {d_lambda}")
    for sec in sections:
        sec.check_geometry()
        sec.nseg = int((sec.electrical_length / (d_lambda * sec.lambda_f(freq)) + 0.9) / 2) * 2 + 1


def apply_spine_correction(
    sections: Iterable[Section],
    spine_area: float = 0.83,
    spine_dens: float = 1.0,
) -> None:
    """
    Fold spine membrane into the dendritic shaft.

    spine_area: um^2 per spine, spine_dens: spines per um of length.
    Membrane area grows by F = (L*spine_area*spine_dens + a) / a while the
    axial resistance is kept, i.e. L -> L*F^(2/3) and diam -> diam*F^(1/3).
    """
    if spine_area < 0 or spine_dens < 0:
        raise ValueError("spine_area and spine_dens must be non-negative")
    for sec in sections:
        a = sec.area()
        if a <= 0:
            raise ValueError(f"{sec.name}: cannot correct spines on a section without membrane")
        sec.spine_factor = (sec.L * spine_area * spine_dens + a) / a


def total_area(sections: Iterable[Section]) -> float:
    """Spine corrected membrane area (um^2)."""
    return float(sum(sec.area() * sec.spine_factor for sec in sections))


def line_section(
    name: str,
    kind: str,
    start: Tuple[float, float, float],
    direction: Tuple[float, float, float],
    length: float,
    diam0: float,
    diam1: Optional[float] = None,
    n_points: int = 2,
) -> Section:
    """Straight (optionally tapered) section from start along direction."""
    if length <= 0:
        raise ValueError(f"{name}: length must be positive, got {length}")
    u = np.asarray(direction, dtype=np.float64)
    norm = np.linalg.norm(u)
    if norm == 0:
        raise ValueError(f"{name}: direction must be non-zero")
    u = u / norm
    diam1 = diam0 if diam1 is None else diam1
    sec = Section(name, kind)
    for f in np.linspace(0.0, 1.0, max(2, int(n_points))):
        p = np.asarray(start, dtype=np.float64) + u * (f * length)
        sec.pt3dadd(p[0], p[1], p[2], diam0 + (diam1 - diam0) * f)
    return sec
