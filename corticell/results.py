# results.py
"""
Simulation results: membrane-potential traces, spike times and summaries.

Results are saved as a pickled dict in a .npy file (np.save(..., allow_pickle))
and read back with load_result().
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np


@dataclass
class SimulationResult:
    t_ms: np.ndarray
    traces: Dict[str, np.ndarray]
    spike_times: Dict[str, np.ndarray]
    meta: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        counts = {k: int(v.size) for k, v in self.spike_times.items()}
        return f"SimulationResult(n_times={self.t_ms.size}, traces={list(self.traces)}, spikes={counts})"

    def trace(self, label: str = "soma") -> np.ndarray:
        try:
            return self.traces[label]
        except KeyError:
            raise KeyError(f"No trace '{label}'. Recorded: {sorted(self.traces)}") from None

    def spikes(self, label: str = "soma") -> np.ndarray:
        try:
            return self.spike_times[label]
        except KeyError:
            raise KeyError(f"No spike detector '{label}'. Available: {sorted(self.spike_times)}") from None

    def spike_count(self, label: str = "soma") -> int:
        return int(self.spikes(label).size)

    def firing_rate_hz(self, label: str = "soma", t_start_ms: float = 0.0,
                       t_stop_ms: Optional[float] = None) -> float:
        st = self.spikes(label)
        t_stop = float(self.t_ms[-1]) if t_stop_ms is None else float(t_stop_ms)
        window = t_stop - t_start_ms
        if window <= 0:
            return 0.0
        n = int(np.sum((st >= t_start_ms) & (st < t_stop)))
        return n / (window * 1e-3)

    def interspike_intervals(self, label: str = "soma") -> np.ndarray:
        return np.diff(self.spikes(label))

    def summary(self, label: str = "soma") -> Dict[str, Any]:
        vm = self.trace(label)
        return {
            "vm0_mV": float(vm[0]),
            "vm_max_mV": float(np.max(vm)),
            "vm_min_mV": float(np.min(vm)),
            "spike_count": self.spike_count(label) if label in self.spike_times else 0,
        }

    def to_payload(self) -> Dict[str, Any]:
        return {
            "t_ms": self.t_ms,
            "traces": dict(self.traces),
            "spike_times": dict(self.spike_times),
            "meta": dict(self.meta),
        }

    def save(self, path: str) -> str:
        d = os.path.dirname(os.path.abspath(path))
        os.makedirs(d, exist_ok=True)
        np.save(path, self.to_payload(), allow_pickle=True)
        return path


def load_result(path: str) -> SimulationResult:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"File not found: {path}")
    data = np.load(path, allow_pickle=True)
    # np.save(dict) -> 0-dim object array
    if isinstance(data, np.ndarray) and data.ndim == 0:
        data = data.item()
    if not isinstance(data, dict):
        raise TypeError(f"Unexpected root type in npy: {type(data)}")
    missing = {"t_ms", "traces", "spike_times"} - set(data)
    if missing:
        raise KeyError(f"Result payload is missing {sorted(missing)}")
    return SimulationResult(
        t_ms=np.asarray(data["t_ms"]),
        traces={k: np.asarray(v) for k, v in data["traces"].items()},
        spike_times={k: np.asarray(v) for k, v in data["spike_times"].items()},
        meta=dict(data.get("meta", {})),
    )
