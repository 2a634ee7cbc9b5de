"""
corticell: multi-compartment neocortical neuron simulation.
"""

from corticell.channels import MECHANISMS, get_mechanism
from corticell.compartments import CompartmentTree
from corticell.config import Biophysics, SimConfig, load_biophysics, load_sim_config
from corticell.model_neocortical import TEMPLATES, NeocorticalCell, create_axon, init_biophysics
from corticell.morphology import Section, apply_spine_correction, geom_nseg, line_section
from corticell.results import SimulationResult, load_result
from corticell.solver import Simulation
from corticell.stimulus import (
    GridField,
    IClamp,
    PointSource,
    UniformField,
    WaveformClamp,
    biphasic_pulse,
    sampled_waveform,
    sine_wave,
    square_pulse,
)

__version__ = "0.1.0"

__all__ = [
    "MECHANISMS",
    "get_mechanism",
    "CompartmentTree",
    "Biophysics",
    "SimConfig",
    "load_biophysics",
    "load_sim_config",
    "TEMPLATES",
    "NeocorticalCell",
    "create_axon",
    "init_biophysics",
    "Section",
    "apply_spine_correction",
    "geom_nseg",
    "line_section",
    "SimulationResult",
    "load_result",
    "Simulation",
    "GridField",
    "IClamp",
    "PointSource",
    "UniformField",
    "WaveformClamp",
    "biphasic_pulse",
    "sampled_waveform",
    "sine_wave",
    "square_pulse",
]
