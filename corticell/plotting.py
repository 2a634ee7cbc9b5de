# plotting.py
"""
Headless figures: membrane-potential traces and 2-D morphology projections.
"""

from __future__ import annotations

import os
from typing import Dict, Optional, Sequence

import numpy as np
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from corticell.results import SimulationResult


KIND_COLORS: Dict[str, str] = {
    "soma": "red",
    "dend": "blue",
    "apic": "purple",
    "hill": "darkgreen",
    "iseg": "green",
    "myelin": "gray",
    "node": "orange",
}


def plot_traces(
    result: SimulationResult,
    path: str,
    labels: Optional[Sequence[str]] = None,
    title: Optional[str] = None,
    dpi: int = 150,
) -> str:
    labels = list(labels) if labels is not None else list(result.traces)
    traces = [result.trace(label) for label in labels]
    fig, ax = plt.subplots(figsize=(10, 5))
    for label, vm in zip(labels, traces):
        ax.plot(result.t_ms, vm, linewidth=1.2, label=f"Vm {label}")
    for label, st in result.spike_times.items():
        if label in labels and st.size:
            ax.plot(st, np.full(st.size, ax.get_ylim()[1]), "|", markersize=10, color="k", alpha=0.6)
    ax.set_xlabel("Time (ms)")
    ax.set_ylabel("Membrane potential Vm (mV)")
    ax.grid(True, linestyle="--", alpha=0.5)
    ax.legend(loc="best", framealpha=0.9)
    if title is None and "soma" in result.spike_times:
        title = f"soma spikes: {result.spike_count('soma')}"
    if title:
        ax.set_title(title)
    fig.tight_layout()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path


def plot_morphology(cell, path: str, plane: str = "xz", dpi: int = 150) -> str:
    """Projection of every section's 3-D points on plane ('xy', 'xz' or 'yz')."""
    axes = {"x": 0, "y": 1, "z": 2}
    if len(plane) != 2 or any(c not in axes for c in plane):
        raise ValueError(f"plane must be two of x/y/z, got '{plane}'")
    i, j = axes[plane[0]], axes[plane[1]]
    sections = cell.all if hasattr(cell, "all") else cell.wholetree()

    fig, ax = plt.subplots(figsize=(6, 8))
    seen = set()
    for sec in sections:
        pts = sec.points
        if pts.shape[0] < 2:
            continue
        color = KIND_COLORS.get(sec.kind, "black")
        lw = max(0.5, min(6.0, float(np.mean(pts[:, 3])) * 0.8))
        label = sec.kind if sec.kind not in seen else None
        seen.add(sec.kind)
        ax.plot(pts[:, i], pts[:, j], color=color, linewidth=lw, label=label, solid_capstyle="round")
    ax.set_xlabel(f"{plane[0]} (um)")
    ax.set_ylabel(f"{plane[1]} (um)")
    ax.set_aspect("equal", adjustable="datalim")
    ax.legend(loc="best", fontsize=8)
    fig.tight_layout()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    return path
