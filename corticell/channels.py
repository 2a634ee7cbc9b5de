# channels.py
"""
Membrane mechanisms (ion channels, leak, calcium buffering).

Each mechanism is vectorised over the compartments it is inserted in. Gating
variables are integrated with the exponential Euler rule

    s <- s + (1 - exp(-dt / tau)) * (inf - s)

and membrane currents are returned as densities in mA/cm^2. Conductance
densities of the neocortical channels are given in pS/um^2 (1 pS/um^2 =
1e-4 S/cm^2).

Kinetics of na, kv, km, kca, ca and cad follow the neocortical cell models of
Mainen & Sejnowski (1996); hh is the squid axon model of Hodgkin & Huxley
(1952).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np


FARADAY = 96485.309  # C/mol


@dataclass
class IonState:
    """Per-compartment ionic state shared by all mechanisms."""
    celsius: float
    ena: np.ndarray
    ek: np.ndarray
    eca: np.ndarray
    cai: np.ndarray
    ica: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.ica is None:
            self.ica = np.zeros_like(self.cai)


def _trap(v: np.ndarray, th, a, q) -> np.ndarray:
    """a * (v - th) / (1 - exp(-(v - th) / q)), with the limit a * q at v == th."""
    x = np.asarray(v - th, dtype=np.float64)
    small = np.abs(x) < 1e-6
    xs = np.where(small, 1.0, x)
    with np.errstate(over="ignore"):
        out = a * xs / (1.0 - np.exp(-xs / q))
    return np.where(small, a * q, out)


class Mechanism:
    name = ""
    ion: Optional[str] = None
    defaults: Dict[str, float] = {}
    states: Tuple[str, ...] = ()

    def __init__(self, index: np.ndarray, params: Optional[Dict[str, np.ndarray]] = None):
        self.index = np.asarray(index, dtype=np.int64)
        self.n = int(self.index.size)
        self.p: Dict[str, np.ndarray] = {k: np.full(self.n, float(v)) for k, v in self.defaults.items()}
        for k, v in (params or {}).items():
            if k not in self.defaults:
                raise ValueError(f"{self.name}: unknown parameter '{k}'")
            self.p[k] = np.broadcast_to(np.asarray(v, dtype=np.float64), (self.n,)).copy()
        self.s: Dict[str, np.ndarray] = {name: np.zeros(self.n) for name in self.states}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n={self.n})"

    def tadj(self, st: IonState) -> np.ndarray:
        return self.p["q10"] ** ((st.celsius - self.p["temp"]) / 10.0)

    def rates(self, v: np.ndarray, st: IonState) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
        """Return {state: (inf, tau_ms)}."""
        return {}

    def init(self, v: np.ndarray, st: IonState) -> None:
        for name, (inf, _) in self.rates(v, st).items():
            self.s[name][:] = inf

    def advance(self, v: np.ndarray, dt: float, st: IonState) -> None:
        for name, (inf, tau) in self.rates(v, st).items():
            s = self.s[name]
            s += (1.0 - np.exp(-dt / tau)) * (inf - s)

    def current(self, v: np.ndarray, st: IonState) -> np.ndarray:
        raise NotImplementedError


# =========================
# Passive / classic
# =========================

class Passive(Mechanism):
    name = "pas"
    defaults = {"g": 0.001, "e": -70.0}  # S/cm^2, mV

    def current(self, v, st):
        return self.p["g"] * (v - self.p["e"])


class HodgkinHuxley(Mechanism):
    name = "hh"
    defaults = {"gnabar": 0.12, "gkbar": 0.036, "gl": 0.0003, "el": -54.3}  # S/cm^2, mV
    states = ("m", "h", "n")

    def rates(self, v, st):
        q10 = 3.0 ** ((st.celsius - 6.3) / 10.0)
        am = _trap(v, -40.0, 0.1, 10.0)
        bm = 4.0 * np.exp(-(v + 65.0) / 18.0)
        ah = 0.07 * np.exp(-(v + 65.0) / 20.0)
        bh = 1.0 / (np.exp(-(v + 35.0) / 10.0) + 1.0)
        an = _trap(v, -55.0, 0.01, 10.0)
        bn = 0.125 * np.exp(-(v + 65.0) / 80.0)
        return {
            "m": (am / (am + bm), 1.0 / (q10 * (am + bm))),
            "h": (ah / (ah + bh), 1.0 / (q10 * (ah + bh))),
            "n": (an / (an + bn), 1.0 / (q10 * (an + bn))),
        }

    def current(self, v, st):
        m, h, n = self.s["m"], self.s["h"], self.s["n"]
        ena = st.ena[self.index]
        ek = st.ek[self.index]
        ina = self.p["gnabar"] * m ** 3 * h * (v - ena)
        ik = self.p["gkbar"] * n ** 4 * (v - ek)
        il = self.p["gl"] * (v - self.p["el"])
        return ina + ik + il


# =========================
# Neocortical channels
# =========================

class Sodium(Mechanism):
    """Fast Na+ channel, m^3 h."""
    name = "na"
    defaults = {
        "gbar": 1000.0,  # pS/um^2
        "vshift": -5.0,
        "tha": -35.0, "qa": 9.0, "Ra": 0.182, "Rb": 0.124,
        "thi1": -50.0, "thi2": -75.0, "qi": 5.0,
        "thinf": -65.0, "qinf": 6.2, "Rg": 0.0091, "Rd": 0.024,
        "temp": 23.0, "q10": 2.3,
    }
    states = ("m", "h")

    def rates(self, v, st):
        p = self.p
        tadj = self.tadj(st)
        vm = v + p["vshift"]
        a = _trap(vm, p["tha"], p["Ra"], p["qa"])
        b = _trap(-vm, -p["tha"], p["Rb"], p["qa"])
        m = (a / (a + b), 1.0 / tadj / (a + b))
        a = _trap(vm, p["thi1"], p["Rd"], p["qi"])
        b = _trap(-vm, -p["thi2"], p["Rg"], p["qi"])
        h = (1.0 / (1.0 + np.exp((vm - p["thinf"]) / p["qinf"])), 1.0 / tadj / (a + b))
        return {"m": m, "h": h}

    def current(self, v, st):
        g = 1e-4 * self.tadj(st) * self.p["gbar"] * self.s["m"] ** 3 * self.s["h"]
        return g * (v - st.ena[self.index])


class _PotassiumN(Mechanism):
    states = ("n",)

    def rates(self, v, st):
        p = self.p
        a = _trap(v, p["tha"], p["Ra"], p["qa"])
        b = _trap(-v, -p["tha"], p["Rb"], p["qa"])
        return {"n": (a / (a + b), 1.0 / self.tadj(st) / (a + b))}

    def current(self, v, st):
        g = 1e-4 * self.tadj(st) * self.p["gbar"] * self.s["n"]
        return g * (v - st.ek[self.index])


class DelayedRectifier(_PotassiumN):
    name = "kv"
    defaults = {"gbar": 5.0, "tha": 25.0, "qa": 9.0, "Ra": 0.02, "Rb": 0.002, "temp": 23.0, "q10": 2.3}


class MCurrent(_PotassiumN):
    name = "km"
    defaults = {"gbar": 10.0, "tha": -30.0, "qa": 9.0, "Ra": 0.001, "Rb": 0.001, "temp": 23.0, "q10": 2.3}


class CalciumActivatedK(Mechanism):
    name = "kca"
    defaults = {"gbar": 10.0, "caix": 1.0, "Ra": 0.01, "Rb": 0.02, "temp": 23.0, "q10": 2.3}
    states = ("n",)

    def rates(self, v, st):
        p = self.p
        a = p["Ra"] * np.maximum(st.cai[self.index], 0.0) ** p["caix"]
        b = p["Rb"]
        return {"n": (a / (a + b), 1.0 / self.tadj(st) / (a + b))}

    def current(self, v, st):
        g = 1e-4 * self.tadj(st) * self.p["gbar"] * self.s["n"]
        return g * (v - st.ek[self.index])


class HighVoltageCalcium(Mechanism):
    """High-voltage activated Ca2+ channel, m^2 h."""
    name = "ca"
    ion = "ca"
    defaults = {"gbar": 0.1, "vshift": 0.0, "temp": 23.0, "q10": 2.3}
    states = ("m", "h")

    def rates(self, v, st):
        tadj = self.tadj(st)
        vm = v + self.p["vshift"]
        a = _trap(vm, -27.0, 0.055, 3.8)
        b = 0.94 * np.exp((-75.0 - vm) / 17.0)
        m = (a / (a + b), 1.0 / tadj / (a + b))
        a = 0.000457 * np.exp((-13.0 - vm) / 50.0)
        b = 0.0065 / (np.exp((-vm - 15.0) / 28.0) + 1.0)
        h = (a / (a + b), 1.0 / tadj / (a + b))
        return {"m": m, "h": h}

    def current(self, v, st):
        g = 1e-4 * self.tadj(st) * self.p["gbar"] * self.s["m"] ** 2 * self.s["h"]
        return g * (v - st.eca[self.index])


class CalciumDecay(Mechanism):
    """Calcium accumulation in a submembrane shell with first order removal."""
    name = "cad"
    defaults = {"depth": 0.1, "taur": 200.0, "cainf": 1e-4}  # um, ms, mM

    def init(self, v, st):
        st.cai[self.index] = self.p["cainf"]

    def advance(self, v, dt, st):
        p = self.p
        # mA/cm^2 over a shell of depth um -> mM/ms
        drive = -1e4 * st.ica[self.index] / (2.0 * FARADAY * p["depth"])
        drive = np.maximum(drive, 0.0)
        target = p["cainf"] + drive * p["taur"]
        ca = st.cai[self.index]
        st.cai[self.index] = target + (ca - target) * np.exp(-dt / p["taur"])

    def current(self, v, st):
        return np.zeros(self.n)


MECHANISMS: Dict[str, type] = {
    cls.name: cls
    for cls in (
        Passive,
        HodgkinHuxley,
        Sodium,
        DelayedRectifier,
        MCurrent,
        CalciumActivatedK,
        HighVoltageCalcium,
        CalciumDecay,
    )
}


def get_mechanism(name: str) -> type:
    try:
        return MECHANISMS[name]
    except KeyError:
        raise ValueError(f"Unknown mechanism '{name}'. Available: {sorted(MECHANISMS)}") from None
