# __main__.py
"""
Command line entry point.

Build a neocortical cell from a template, apply a somatic current clamp and/or
a uniform extracellular E-field, run the simulation and save the result.

Examples
  python -m corticell --cell l5_pyramid --amp 1.0 --delay 20 --dur 200 --tstop 300
  python -m corticell --cell l3_pyramid --field 0,0,100 --field-onset 10 --field-dur 5 --plot
"""

from __future__ import annotations

import argparse
import math
import os
from dataclasses import replace
from typing import List, Optional, Tuple

from corticell.config import (
    Biophysics,
    SimConfig,
    load_biophysics,
    load_sim_config,
    quiet_from_env,
    to_dict,
)
from corticell.export import save_coordinates
from corticell.model_neocortical import TEMPLATES, NeocorticalCell, get_template
from corticell.plotting import plot_morphology, plot_traces
from corticell.solver import Simulation
from corticell.stimulus import UniformField, square_pulse

CLASSIC_HH_CELSIUS = 6.3


def _parse_vector(text: str) -> Tuple[float, float, float]:
    parts = [tok.strip() for tok in str(text).split(",") if tok.strip()]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected Ex,Ey,Ez (3 comma-separated values), got '{text}'")
    try:
        return float(parts[0]), float(parts[1]), float(parts[2])
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="corticell", description="Multi-compartment neocortical neuron simulation")
    ap.add_argument("--cell", type=str, default="l5_pyramid", choices=TEMPLATES, help="Morphology template")
    ap.add_argument("--amp", type=float, default=0.0, help="Somatic current clamp amplitude (nA)")
    ap.add_argument("--delay", type=float, default=10.0, help="Current clamp onset (ms)")
    ap.add_argument("--dur", type=float, default=100.0, help="Current clamp duration (ms)")
    ap.add_argument("--field", type=_parse_vector, default=None, help="Uniform E-field Ex,Ey,Ez (V/m)")
    ap.add_argument("--field-onset", type=float, default=0.0, help="E-field onset (ms)")
    ap.add_argument("--field-dur", type=float, default=None, help="E-field duration (ms, default: until tstop)")
    ap.add_argument("--tstop", type=float, default=None, help="Simulation end time (ms)")
    ap.add_argument("--dt", type=float, default=None, help="Time step (ms)")
    ap.add_argument("--warmup", type=float, default=None, help="Stimulus-free warm-up before t=0 (ms)")
    ap.add_argument("--celsius", type=float, default=None,
                    help="Temperature (degC, default: 6.3 for ball_and_stick, 37 otherwise)")
    ap.add_argument("--params", type=str, default=None, help="JSON file with Biophysics overrides")
    ap.add_argument("--sim-config", type=str, default=None, help="JSON file with SimConfig overrides")
    ap.add_argument("--out-dir", type=str, default="output", help="Output directory (default: ./output)")
    ap.add_argument("--plot", action="store_true", help="Save Vm trace and morphology figures")
    ap.add_argument("--export-coords", action="store_true", help="Save compartment coordinates (.npy and .csv)")
    ap.add_argument("--quiet", action="store_true", help="Print the final summary line only")
    return ap


def _sim_config(args: argparse.Namespace) -> SimConfig:
    cfg = load_sim_config(args.sim_config) if args.sim_config else SimConfig()
    overrides = {}
    if args.tstop is not None:
        overrides["tstop_ms"] = args.tstop
    if args.dt is not None:
        overrides["dt_ms"] = args.dt
    if args.warmup is not None:
        overrides["warmup_ms"] = args.warmup
    if args.celsius is not None:
        overrides["celsius"] = args.celsius
    elif not args.sim_config and get_template(args.cell).classic_hh:
        # squid axon kinetics: no q10 scaling at 6.3 degC
        overrides["celsius"] = CLASSIC_HH_CELSIUS
    if overrides:
        cfg = replace(cfg, **overrides)
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    verbose = not (args.quiet or quiet_from_env())

    params = load_biophysics(args.params) if args.params else Biophysics()
    cfg = _sim_config(args)

    if verbose:
        print(f"\n=== corticell: {args.cell} ===", flush=True)
        print(f"dt={cfg.dt_ms:.4f} ms, tstop={cfg.tstop_ms:.1f} ms, warmup={cfg.warmup_ms:.1f} ms, "
              f"celsius={cfg.celsius:.1f}", flush=True)

    cell = NeocorticalCell(args.cell, params=params, verbose=verbose)
    sim = Simulation(cell, cfg, verbose=verbose)

    if args.amp != 0.0:
        sim.iclamp(cell.soma, 0.5, delay=args.delay, dur=args.dur, amp=args.amp)
        if verbose:
            print(f"IClamp soma(0.5): {args.amp:g} nA, {args.delay:g} to {args.delay + args.dur:g} ms", flush=True)

    if args.field is not None:
        field_dur = math.inf if args.field_dur is None else args.field_dur
        sim.add_source(UniformField(args.field, waveform=square_pulse(args.field_onset, field_dur),
                                    origin=cell.soma_location()))
        if verbose:
            ex, ey, ez = args.field
            print(f"Uniform E-field ({ex:g}, {ey:g}, {ez:g}) V/m from {args.field_onset:g} ms", flush=True)

    result = sim.run()
    result.meta["cell"] = args.cell
    result.meta["biophysics"] = to_dict(params)
    if args.amp != 0.0:
        result.meta["iclamp"] = {"amp_nA": args.amp, "delay_ms": args.delay, "dur_ms": args.dur}
    if args.field is not None:
        result.meta["e_field_V_per_m"] = list(args.field)

    os.makedirs(args.out_dir, exist_ok=True)
    out_path = result.save(os.path.join(args.out_dir, f"{args.cell}_result.npy"))

    s = result.summary()
    print(f"Soma: Vm0={s['vm0_mV']:.3f} mV, Vm range [{s['vm_min_mV']:.3f}, {s['vm_max_mV']:.3f}] mV, "
          f"spikes={s['spike_count']}", flush=True)
    if verbose:
        print(f"Saved: {out_path}", flush=True)

    if args.plot:
        p1 = plot_traces(result, os.path.join(args.out_dir, f"{args.cell}_vm.png"))
        p2 = plot_morphology(cell, os.path.join(args.out_dir, f"{args.cell}_morphology.png"))
        if verbose:
            print(f"Saved: {p1}\nSaved: {p2}", flush=True)

    if args.export_coords:
        for ext in (".npy", ".csv"):
            p = save_coordinates(sim.tree, os.path.join(args.out_dir, f"{args.cell}_coords{ext}"))
            if verbose:
                print(f"Saved: {p}", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
