# solver.py
"""
Implicit cable-equation solver.

State variable v is the transmembrane potential (mV). With an extracellular
potential v_e imposed on the compartments, the intracellular potential is
v + v_e and the cable equation per compartment reads

    C dv/dt = -I_ion(v) - (L (v + v_e)) + I_stim

with L the axial conductance matrix. Each fixed step uses backward Euler with
ionic currents linearized around the present voltage (slope from a 1e-3 mV
finite difference):

    (C/dt + G_ion + L) dv = I_stim - I_ion - L (v + v_e(t + dt))

followed by the gating / calcium update at the new voltage.

Units: nA, mV, ms, uS, nF, um.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve
from tqdm import tqdm

from corticell.channels import MECHANISMS, IonState, Mechanism
from corticell.compartments import CompartmentTree
from corticell.config import SimConfig, quiet_from_env
from corticell.morphology import Section
from corticell.results import SimulationResult
from corticell.stimulus import ExtracellularSource, IClamp, WaveformClamp


DV_SLOPE = 1e-3  # mV, finite difference for di/dv
CAI_REST = 1e-4  # mM


def _diagonal_positions(a: sp.csc_matrix) -> np.ndarray:
    """Index into a.data of every diagonal entry (all must be stored)."""
    pos = np.empty(a.shape[0], dtype=np.int64)
    for j in range(a.shape[0]):
        lo, hi = a.indptr[j], a.indptr[j + 1]
        hits = np.flatnonzero(a.indices[lo:hi] == j)
        if hits.size == 0:
            raise RuntimeError(f"Diagonal entry {j} is not stored")
        pos[j] = lo + hits[0]
    return pos


class Simulation:
    def __init__(self, cell, config: Optional[SimConfig] = None, verbose: Optional[bool] = None):
        """
        cell: a model exposing .soma (e.g. NeocorticalCell) or any Section of a tree.
        """
        self.config = config or SimConfig()
        self.verbose = (not quiet_from_env()) if verbose is None else bool(verbose)
        self.cell = cell
        root_hint: Section = getattr(cell, "soma", cell)
        if not isinstance(root_hint, Section):
            raise TypeError(f"Expected a Section or a cell with .soma, got {type(cell).__name__}")
        self.soma = root_hint
        self.tree = CompartmentTree.from_sections(root_hint.root())

        n = len(self.tree)
        self.mechanisms: List[Mechanism] = [
            MECHANISMS[layout.name](layout.index, layout.params) for layout in self.tree.mechanism_layouts()
        ]
        # calcium buffers initialize cai before cai-dependent gates read it
        self.mechanisms.sort(key=lambda m: 0 if m.name == "cad" else 1)

        self._lap = self.tree.laplacian()
        self._lap_diag = self._lap.diagonal()
        a = (self._lap + sp.identity(n, format="csr")).tocsc()
        a.sort_indices()
        self._A = a
        self._diag_pos = _diagonal_positions(a)
        self._scale = self.tree.area * 1e-2  # mA/cm^2 -> nA, S/cm^2 -> uS

        self.clamps: List[Tuple[int, Union[IClamp, WaveformClamp]]] = []
        self.sources: List[ExtracellularSource] = []
        self._records: List[Tuple[str, int]] = []
        self._detectors: List[Tuple[str, int, float]] = []

        self.t = 0.0
        self.v = np.full(n, self.config.v_init_mV, dtype=np.float64)
        self.v_ext = np.zeros(n, dtype=np.float64)
        self.ions = self._fresh_ions()
        self._initialized = False

        self.record(self.soma, 0.5, "soma")
        self.spike_detector(self.soma, 0.5, self.config.spike_thr_mV, "soma")

        if self.verbose:
            print(
                f"Simulation: {len(self.tree.sections)} sections, {n} compartments, "
                f"mechanisms: {', '.join(f'{m.name}[{m.n}]' for m in self.mechanisms)}",
                flush=True,
            )

    def __repr__(self) -> str:
        return f"Simulation({self.tree!r}, t={self.t:.3f} ms)"

    # =========================
    # Setup
    # =========================

    def _fresh_ions(self) -> IonState:
        n = len(self.tree)
        return IonState(
            celsius=self.config.celsius,
            ena=self.tree.per_compartment("ena"),
            ek=self.tree.per_compartment("ek"),
            eca=self.tree.per_compartment("eca"),
            cai=np.full(n, CAI_REST, dtype=np.float64),
        )

    def add_clamp(self, clamp: Union[IClamp, WaveformClamp]) -> Union[IClamp, WaveformClamp]:
        self.clamps.append((self.tree.locate(clamp.section, clamp.x), clamp))
        return clamp

    def iclamp(self, section: Section, x: float = 0.5, delay: float = 0.0, dur: float = 0.0,
               amp: float = 0.0) -> IClamp:
        clamp = IClamp(section, x, delay=delay, dur=dur, amp=amp)
        self.add_clamp(clamp)
        return clamp

    def add_source(self, source: ExtracellularSource) -> ExtracellularSource:
        source.bind(self.tree)
        self.sources.append(source)
        return source

    def record(self, section: Section, x: float = 0.5, label: Optional[str] = None) -> str:
        label = label or f"{section.name}({x:g})"
        if any(lbl == label for lbl, _ in self._records):
            raise ValueError(f"Trace label '{label}' is already in use")
        self._records.append((label, self.tree.locate(section, x)))
        return label

    def record_all(self) -> List[str]:
        taken = {lbl for lbl, _ in self._records}
        labels = []
        for idx, label in enumerate(self.tree.labels()):
            if label in taken:
                continue
            self._records.append((label, idx))
            labels.append(label)
        return labels

    def spike_detector(self, section: Section, x: float = 0.5, threshold: Optional[float] = None,
                       label: Optional[str] = None) -> str:
        label = label or f"{section.name}({x:g})"
        if any(lbl == label for lbl, _, _ in self._detectors):
            raise ValueError(f"Spike detector label '{label}' is already in use")
        thr = self.config.spike_thr_mV if threshold is None else float(threshold)
        self._detectors.append((label, self.tree.locate(section, x), thr))
        return label

    # =========================
    # Integration
    # =========================

    def initialize(self) -> None:
        """v = v_init, gates at steady state, clock at 0."""
        self.t = 0.0
        self.v[:] = self.config.v_init_mV
        self.v_ext[:] = 0.0
        self.ions = self._fresh_ions()
        for mech in self.mechanisms:
            mech.init(self.v[mech.index], self.ions)
        self._membrane_currents()
        self._initialized = True

    def _membrane_currents(self) -> Tuple[np.ndarray, np.ndarray]:
        """Total ionic current (nA) and its slope (uS) per compartment."""
        n = len(self.tree)
        i_ion = np.zeros(n)
        g_ion = np.zeros(n)
        self.ions.ica[:] = 0.0
        for mech in self.mechanisms:
            vm = self.v[mech.index]
            i0 = mech.current(vm, self.ions)
            i1 = mech.current(vm + DV_SLOPE, self.ions)
            i_ion[mech.index] += i0
            g_ion[mech.index] += (i1 - i0) / DV_SLOPE
            if mech.ion == "ca":
                self.ions.ica[mech.index] += i0
        return i_ion * self._scale, g_ion * self._scale

    def _extracellular(self, t: float) -> np.ndarray:
        if not self.sources:
            return self.v_ext
        phi = np.zeros(len(self.tree))
        for src in self.sources:
            phi += src.potential(t)
        return phi

    def _stimulus(self, t: float) -> np.ndarray:
        i_stim = np.zeros(len(self.tree))
        for idx, clamp in self.clamps:
            i_stim[idx] += clamp.current(t)
        return i_stim

    def step(self, stimulate: bool = True) -> None:
        dt = self.config.dt_ms
        t_next = self.t + dt
        if stimulate:
            self.v_ext = self._extracellular(t_next)
            i_stim = self._stimulus(self.t + 0.5 * dt)
        else:
            self.v_ext = np.zeros(len(self.tree))
            i_stim = 0.0

        i_ion, g_ion = self._membrane_currents()
        self._A.data[self._diag_pos] = self.tree.capacitance / dt + g_ion + self._lap_diag
        rhs = i_stim - i_ion - self._lap @ (self.v + self.v_ext)
        self.v += spsolve(self._A, rhs)
        self.t = t_next

        for mech in self.mechanisms:
            mech.advance(self.v[mech.index], dt, self.ions)

        if not np.all(np.isfinite(self.v)):
            raise RuntimeError(f"Membrane potential diverged at t={self.t:.4f} ms (try a smaller dt)")

    def warmup(self, duration_ms: Optional[float] = None) -> None:
        """Run with every stimulus off, then reset the clock to 0 keeping the state."""
        duration = self.config.warmup_ms if duration_ms is None else float(duration_ms)
        if duration < 0:
            raise ValueError(f"warmup duration must be non-negative, got {duration}")
        n = int(round(duration / self.config.dt_ms))
        for _ in range(n):
            self.step(stimulate=False)
        self.t = 0.0
        if self.verbose and n:
            print(f"Warm-up done: {duration:.1f} ms, soma Vm={self.v_at(self.soma, 0.5):.3f} mV", flush=True)

    def run(self, tstop_ms: Optional[float] = None, progress: Optional[bool] = None) -> SimulationResult:
        cfg = self.config
        tstop = cfg.tstop_ms if tstop_ms is None else float(tstop_ms)
        if tstop < 0:
            raise ValueError(f"tstop must be non-negative, got {tstop}")
        show = self.verbose if progress is None else bool(progress)

        self.initialize()
        if cfg.warmup_ms > 0:
            self.warmup()

        every = int(cfg.record_every)
        nsteps = int(round(tstop / cfg.dt_ms))
        nrec = nsteps // every + 1
        rec_idx = np.asarray([idx for _, idx in self._records], dtype=np.int64)
        t_rec = np.zeros(nrec)
        v_rec = np.zeros((rec_idx.size, nrec))
        spikes: Dict[str, List[float]] = {label: [] for label, _, _ in self._detectors}

        self.v_ext = self._extracellular(self.t)
        t_rec[0] = self.t
        v_rec[:, 0] = self.v[rec_idx]
        r = 1

        pbar = tqdm(total=nsteps, desc="Simulating", ncols=90, disable=not show, leave=False)
        for k in range(1, nsteps + 1):
            t_prev = self.t
            v_prev = self.v.copy()
            self.step()
            for label, idx, thr in self._detectors:
                a, b = v_prev[idx], self.v[idx]
                if a < thr <= b:
                    spikes[label].append(t_prev + (self.t - t_prev) * (thr - a) / (b - a))
            if k % every == 0:
                t_rec[r] = self.t
                v_rec[:, r] = self.v[rec_idx]
                r += 1
            pbar.update(1)
        pbar.close()

        result = SimulationResult(
            t_ms=t_rec[:r],
            traces={label: v_rec[i, :r] for i, (label, _) in enumerate(self._records)},
            spike_times={label: np.asarray(ts, dtype=np.float64) for label, ts in spikes.items()},
            meta={
                "dt_ms": cfg.dt_ms,
                "tstop_ms": tstop,
                "celsius": cfg.celsius,
                "v_init_mV": cfg.v_init_mV,
                "warmup_ms": cfg.warmup_ms,
                "n_compartments": len(self.tree),
                "n_sections": len(self.tree.sections),
                "spike_thresholds_mV": {label: thr for label, _, thr in self._detectors},
                "definition": {
                    "Vm": "transmembrane potential (intracellular - extracellular)",
                    "spike_count": "upward threshold crossings of Vm",
                },
            },
        )
        if self.verbose:
            s = result.summary()
            print(
                f"Done: t={tstop:.1f} ms, soma spikes={s['spike_count']}, "
                f"Vm range [{s['vm_min_mV']:.2f}, {s['vm_max_mV']:.2f}] mV",
                flush=True,
            )
        return result

    # =========================
    # Access
    # =========================

    def v_at(self, section: Section, x: float = 0.5) -> float:
        return float(self.v[self.tree.locate(section, x)])

    def state_of(self, mechanism: str, state: str, section: Section, x: float = 0.5) -> float:
        idx = self.tree.locate(section, x)
        for mech in self.mechanisms:
            if mech.name != mechanism:
                continue
            hit = np.flatnonzero(mech.index == idx)
            if hit.size:
                return float(mech.s[state][hit[0]])
        raise ValueError(f"Mechanism '{mechanism}' is not present at {section.name}({x})")

    def input_resistance(self, section: Section, x: float = 0.5) -> float:
        """Steady-state input resistance (MOhm) at the present state, all gates frozen."""
        n = len(self.tree)
        _, g_ion = self._membrane_currents()
        a = (self._lap + sp.diags(g_ion)).tocsc()
        rhs = np.zeros(n)
        idx = self.tree.locate(section, x)
        rhs[idx] = 1.0  # nA
        return float(spsolve(a, rhs)[idx])
