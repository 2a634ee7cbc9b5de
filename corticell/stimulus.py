# stimulus.py
"""
Stimuli: intracellular current clamps and extracellular potentials.

Extracellular sources impose a quasi-static potential phi (mV) on every
compartment. Sources are bound to a CompartmentTree once (spatial part cached)
and then queried with potential(t_ms) during the run.

Unit conventions
  - positions in um, E-field in V/m
  - (V/m) * um -> mV needs a factor 1e-3 (E_FACTOR)
"""

from __future__ import annotations

import math
import os
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from corticell.compartments import CompartmentTree
from corticell.morphology import Section


E_FACTOR = 1e-3  # (V/m * um) -> mV

Waveform = Callable[[float], float]


# =========================
# Waveforms
# =========================

def square_pulse(delay_ms: float, dur_ms: float, amp: float = 1.0) -> Waveform:
    t0 = float(delay_ms)
    t1 = t0 + float(dur_ms)

    def w(t: float) -> float:
        return amp if t0 <= t < t1 else 0.0

    return w


def biphasic_pulse(delay_ms: float, phase_ms: float, gap_ms: float = 0.0, amp: float = 1.0,
                   cathodic_first: bool = True) -> Waveform:
    """Charge balanced pulse: first phase, gap, second phase of opposite sign."""
    sign = -1.0 if cathodic_first else 1.0
    t0 = float(delay_ms)
    t1 = t0 + phase_ms
    t2 = t1 + gap_ms
    t3 = t2 + phase_ms

    def w(t: float) -> float:
        if t0 <= t < t1:
            return sign * amp
        if t2 <= t < t3:
            return -sign * amp
        return 0.0

    return w


def sine_wave(freq_hz: float, delay_ms: float = 0.0, dur_ms: float = math.inf, amp: float = 1.0,
              phase: float = 0.0) -> Waveform:
    omega = 2.0 * math.pi * freq_hz * 1e-3  # rad/ms

    def w(t: float) -> float:
        if t < delay_ms or t >= delay_ms + dur_ms:
            return 0.0
        return amp * math.sin(omega * (t - delay_ms) + phase)

    return w


def sampled_waveform(t_ms: Sequence[float], values: Sequence[float]) -> Waveform:
    """Linear interpolation of samples, zero outside the sampled window."""
    tt = np.asarray(t_ms, dtype=np.float64)
    yy = np.asarray(values, dtype=np.float64)
    if tt.ndim != 1 or tt.shape != yy.shape or tt.size < 2:
        raise ValueError("t_ms and values must be 1-D arrays of equal length (>= 2)")
    if np.any(np.diff(tt) <= 0):
        raise ValueError("t_ms must be strictly increasing")

    def w(t: float) -> float:
        if t < tt[0] or t > tt[-1]:
            return 0.0
        return float(np.interp(t, tt, yy))

    return w


# =========================
# Intracellular
# =========================

class IClamp:
    """Rectangular current injection (nA)."""

    def __init__(self, section: Section, x: float = 0.5, delay: float = 0.0, dur: float = 0.0,
                 amp: float = 0.0):
        if dur < 0:
            raise ValueError(f"IClamp duration must be non-negative, got {dur}")
        self.section = section
        self.x = x
        self.delay = delay
        self.dur = dur
        self.amp = amp

    def __repr__(self) -> str:
        return f"IClamp({self.section.name}({self.x}), del={self.delay}, dur={self.dur}, amp={self.amp})"

    def current(self, t: float) -> float:
        return self.amp if self.delay <= t < self.delay + self.dur else 0.0


class WaveformClamp:
    """Current injection following an arbitrary waveform (nA = scale * w(t))."""

    def __init__(self, section: Section, x: float, waveform: Waveform, scale: float = 1.0):
        self.section = section
        self.x = x
        self.waveform = waveform
        self.scale = scale

    def current(self, t: float) -> float:
        return self.scale * float(self.waveform(t))


# =========================
# Extracellular
# =========================

class ExtracellularSource:
    def bind(self, tree: CompartmentTree) -> None:
        raise NotImplementedError

    def potential(self, t: float) -> np.ndarray:
        raise NotImplementedError


class UniformField(ExtracellularSource):
    """Spatially uniform E-field; phi = -(E . r) * E_FACTOR, scaled by waveform(t)."""

    def __init__(self, e_field: Tuple[float, float, float], waveform: Optional[Waveform] = None,
                 origin: Tuple[float, float, float] = (0.0, 0.0, 0.0)):
        self.e_field = np.asarray(e_field, dtype=np.float64)
        if self.e_field.shape != (3,):
            raise ValueError(f"e_field must have 3 components, got {self.e_field.shape}")
        self.waveform = waveform or (lambda t: 1.0)
        self.origin = np.asarray(origin, dtype=np.float64)
        self._phi: Optional[np.ndarray] = None

    def bind(self, tree):
        self._phi = -((tree.xyz - self.origin) @ self.e_field) * E_FACTOR

    def potential(self, t):
        if self._phi is None:
            raise RuntimeError("UniformField used before bind()")
        return self._phi * float(self.waveform(t))


class PointSource(ExtracellularSource):
    """Monopolar electrode in an infinite homogeneous medium: phi = I / (4 pi sigma r)."""

    def __init__(self, position: Tuple[float, float, float], current_uA: float,
                 sigma: float = 0.3, waveform: Optional[Waveform] = None,
                 min_distance_um: float = 1.0):
        if sigma <= 0:
            raise ValueError(f"sigma must be positive (S/m), got {sigma}")
        self.position = np.asarray(position, dtype=np.float64)
        self.current_uA = current_uA
        self.sigma = sigma
        self.waveform = waveform or (lambda t: 1.0)
        self.min_distance_um = min_distance_um
        self._phi: Optional[np.ndarray] = None

    def bind(self, tree):
        r = np.linalg.norm(tree.xyz - self.position, axis=1)
        r = np.maximum(r, self.min_distance_um)
        # uA / (S/m * um) = V ; *1e3 -> mV
        self._phi = self.current_uA / (4.0 * math.pi * self.sigma * r) * 1e3

    def potential(self, t):
        if self._phi is None:
            raise RuntimeError("PointSource used before bind()")
        return self._phi * float(self.waveform(t))


class GridField(ExtracellularSource):
    """
    Sampled E-field on scattered grid points.

    values: (3, N, T) or (2, N, T) with (Ex, Ez) components, V/m.
    coords_um: (N, 3) grid coordinates in um.

    The potential is integrated along the tree from the root compartment:
    phi_child = phi_parent - E(mid) . (r_child - r_parent) * E_FACTOR,
    with E taken at the grid point nearest to the path midpoint. The field is
    piecewise constant in time (floor index) and zero before onset_ms and
    after the last sample interval.
    """

    def __init__(self, coords_um: np.ndarray, values: np.ndarray, dt_ms: float, scale: float = 1.0,
                 onset_ms: float = 0.0):
        coords_um = np.asarray(coords_um, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)
        if coords_um.ndim != 2 or coords_um.shape[1] != 3:
            raise ValueError(f"coords_um must be (N,3). Got {coords_um.shape}")
        if values.ndim != 3 or values.shape[0] not in (2, 3):
            raise ValueError(f"values must be (3,N,T) or (2,N,T). Got {values.shape}")
        if values.shape[1] != coords_um.shape[0]:
            raise ValueError(f"values has {values.shape[1]} points but coords has {coords_um.shape[0]}")
        if dt_ms <= 0:
            raise ValueError(f"dt_ms must be positive, got {dt_ms}")
        if values.shape[0] == 2:
            # (Ex, Ez) -> (Ex, 0, Ez)
            values = np.stack([values[0], np.zeros_like(values[0]), values[1]])
        self.coords_um = coords_um
        self.values = values
        self.dt_ms = float(dt_ms)
        self.scale = float(scale)
        self.onset_ms = float(onset_ms)
        self._tree = cKDTree(coords_um)
        self._parent: Optional[np.ndarray] = None
        self._dl: Optional[np.ndarray] = None
        self._mid_idx: Optional[np.ndarray] = None
        self._last_index = -1
        self._last_phi: Optional[np.ndarray] = None

    @classmethod
    def from_files(cls, values_file: str, coords_file: str, dt_ms: float, coords_scale: float = 1e6,
                   unit_scale: float = 1.0, **kwargs) -> "GridField":
        """Load .npy arrays; coords_scale converts grid units to um (m -> um by default)."""
        for path in (values_file, coords_file):
            if not os.path.exists(path):
                raise FileNotFoundError(f"E-field file not found: {path}")
        values = np.load(values_file) * unit_scale
        coords = np.load(coords_file) * coords_scale
        return cls(coords, values, dt_ms, **kwargs)

    @property
    def n_times(self) -> int:
        return int(self.values.shape[2])

    def time_index(self, t: float) -> int:
        """Floor index into the sampled field, -1 outside the window."""
        rel = t - self.onset_ms
        if rel < 0:
            return -1
        i = int(math.floor(rel / self.dt_ms + 1e-9))
        return i if i < self.n_times else -1

    def bind(self, tree):
        self._parent = tree.parent.copy()
        n = len(tree)
        self._dl = np.zeros((n, 3), dtype=np.float64)
        mids = tree.xyz.copy()
        has_parent = self._parent >= 0
        self._dl[has_parent] = tree.xyz[has_parent] - tree.xyz[self._parent[has_parent]]
        mids[has_parent] = 0.5 * (tree.xyz[has_parent] + tree.xyz[self._parent[has_parent]])
        _, idx = self._tree.query(mids, k=1)
        self._mid_idx = np.asarray(idx, dtype=np.int64)
        self._last_index = -1
        self._last_phi = None

    def field_at(self, ti: int) -> np.ndarray:
        """(n_compartments, 3) E-field (V/m) at path midpoints."""
        if self._mid_idx is None:
            raise RuntimeError("GridField used before bind()")
        return self.values[:, self._mid_idx, ti].T * self.scale

    def potential(self, t):
        if self._parent is None:
            raise RuntimeError("GridField used before bind()")
        ti = self.time_index(t)
        if ti < 0:
            return np.zeros(self._parent.size)
        if ti == self._last_index and self._last_phi is not None:
            return self._last_phi
        dphi = -np.einsum("ij,ij->i", self.field_at(ti), self._dl) * E_FACTOR
        phi = np.zeros(self._parent.size)
        # parent[i] < i: one ordered pass accumulates along every path
        for i in range(phi.size):
            p = self._parent[i]
            phi[i] = dphi[i] if p < 0 else phi[p] + dphi[i]
        self._last_index = ti
        self._last_phi = phi
        return phi
