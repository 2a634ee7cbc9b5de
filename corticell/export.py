# export.py
"""
Compartment coordinate export.

segment_table() lists every compartment (section, kind, normalized position,
center coordinates, diameter, membrane area); save_coordinates() writes the
centers as an (N, 3) .npy array (um) or the whole table as .csv.
"""

from __future__ import annotations

import os

import numpy as np
import pandas as pd

from corticell.compartments import CompartmentTree


COLUMNS = ["section", "kind", "x", "x_um", "y_um", "z_um", "diam_um", "area_um2", "parent"]


def segment_table(tree: CompartmentTree) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "section": [sec.name for sec in tree.section_of],
            "kind": [sec.kind for sec in tree.section_of],
            "x": tree.x,
            "x_um": tree.xyz[:, 0],
            "y_um": tree.xyz[:, 1],
            "z_um": tree.xyz[:, 2],
            "diam_um": tree.diam,
            "area_um2": tree.area,
            "parent": tree.parent,
        },
        columns=COLUMNS,
    )


def save_coordinates(tree: CompartmentTree, path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
    if ext == ".npy":
        np.save(path, tree.xyz.astype(np.float64))
    elif ext == ".csv":
        segment_table(tree).to_csv(path, index=False)
    else:
        raise ValueError(f"Unsupported coordinate file type '{ext}' (use .npy or .csv)")
    return path
