# config.py
"""
Simulation and biophysics configuration.

Defaults reproduce the neocortical cell parameters (passive membrane, channel
densities, axon geometry). JSON files may override any field:

    {"gna_dend": 30, "spine_dens": 0.5}
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional, Type, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class SimConfig:
    dt_ms: float = 0.025
    tstop_ms: float = 500.0
    v_init_mV: float = -70.0
    celsius: float = 37.0
    spike_thr_mV: float = 0.0
    warmup_ms: float = 0.0
    record_every: int = 1

    def __post_init__(self) -> None:
        if self.dt_ms <= 0:
            raise ValueError(f"dt_ms must be positive, got {self.dt_ms}")
        if self.tstop_ms < 0:
            raise ValueError(f"tstop_ms must be non-negative, got {self.tstop_ms}")
        if self.warmup_ms < 0:
            raise ValueError(f"warmup_ms must be non-negative, got {self.warmup_ms}")
        if int(self.record_every) < 1:
            raise ValueError(f"record_every must be >= 1, got {self.record_every}")


@dataclass(frozen=True)
class Biophysics:
    # passive
    ra: float = 150.0  # Ohm-cm
    rm: float = 30000.0  # Ohm-cm^2
    c_m: float = 0.75  # uF/cm^2
    cm_myelin: float = 0.04  # uF/cm^2
    g_pas_node: float = 0.02  # S/cm^2
    v_init: float = -70.0  # mV, also e_pas

    # reversal potentials (mV)
    Ek: float = -90.0
    Ena: float = 60.0
    Eca: float = 140.0

    # channel densities (pS/um^2)
    gna_dend: float = 20.0
    gna_node: float = 30000.0
    gna_soma: float = 20.0
    gkv_axon: float = 2000.0
    gkv_soma: float = 200.0
    gca: float = 0.3
    gkm: float = 0.1
    gkca: float = 3.0
    gca_soma: float = 0.3
    gkm_soma: float = 0.1
    gkca_soma: float = 3.0
    vshift_na: float = -5.0

    # spines
    spine_area: float = 0.83  # um^2 per spine
    spine_dens: float = 1.0  # spines per um

    # axon geometry (um)
    n_axon_seg: int = 5
    hill_length: float = 10.0
    iseg_length: float = 15.0
    myelin_length: float = 100.0
    node_length: float = 1.0
    node_diam_ratio: float = 0.75
    hill_taper: float = 4.0

    # discretization
    d_lambda: float = 0.1
    lambda_freq: float = 100.0

    def __post_init__(self) -> None:
        for name in ("ra", "rm", "c_m", "cm_myelin", "d_lambda", "lambda_freq"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if int(self.n_axon_seg) < 0:
            raise ValueError(f"n_axon_seg must be >= 0, got {self.n_axon_seg}")


def _from_dict(cls: Type[T], values: Dict[str, Any], base: Optional[T] = None) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} key(s): {unknown}")
    if base is None:
        return cls(**values)
    return replace(base, **values)  # type: ignore[type-var]


def _load_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object, got {type(data).__name__}")
    return data


def load_biophysics(path: str, base: Optional[Biophysics] = None) -> Biophysics:
    """Biophysics defaults (or base) overridden by the keys of a JSON file."""
    return _from_dict(Biophysics, _load_json(path), base)


def load_sim_config(path: str, base: Optional[SimConfig] = None) -> SimConfig:
    return _from_dict(SimConfig, _load_json(path), base)


def to_dict(cfg: Any) -> Dict[str, Any]:
    return asdict(cfg)


def quiet_from_env() -> bool:
    """CORTICELL_QUIET=1 turns status output off."""
    return os.environ.get("CORTICELL_QUIET", "0").strip().lower() in ("1", "true", "yes")
