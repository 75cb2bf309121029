"""Pytest fixtures for NTA analysis tests."""

import sys
from pathlib import Path

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from nta_labels import FilenameSchema


SCHEMA_DIR = Path(__file__).parent.parent / "schemas"

PREAMBLE_FIELDS = [
    "Original File:\tC:\\ZetaView\\Data\\{name}.avi\tSection: 0",
    "Operator:\tHB",
    "Experiment:\t{name}",
    "ZetaView S/N:\t252-1234",
    "Cell S/N:\t1-0456",
    "Software:\tZNTA\tAnalyze: 8.05.16 SP3",
    "SOP:\tEV_size",
    "Sample:\tEV tau seeding",
    "Electrolyte:\tPBS",
    "pH:\t7.0 entered",
    "Conductivity:\t14500.0 sensed",
    "Temperature:\t{temperature} sensed",
    "Viscosity:\t0.92",
    "Date:\t2024-03-12",
    "Time:\t10:15:00",
    "Particle Drift Check Result:\t{drift}",
    "Cell Check Result:\tGood",
    "Positions:\t11",
    "Number of Traces:\t1834",
    "Average Number of Particles:\t143.2",
    "Dilution::\t{dilution}",
    "Laser Wavelength nm:\t488.00",
    "Camera:\tFpSec 30 #Cycles 2",
]

COLUMN_HEADER = "Size / nm\tNumber\tConcentration / cm-3\tVolume / nm^3\tArea / nm^2"


def build_nta_content(counts, sizes=None, preamble_lines=76, name="sample",
                      temperature="24.50", drift="Good", dilution="1000.0"):
    """Content of a synthetic ZetaView size distribution file."""
    counts = list(counts)
    if sizes is None:
        sizes = [0.5 + i for i in range(len(counts))]

    preamble = [
        line.format(name=name, temperature=temperature, drift=drift, dilution=dilution)
        for line in PREAMBLE_FIELDS
    ]
    preamble = preamble[:max(preamble_lines - 2, 0)]
    while len(preamble) < preamble_lines - 2:
        preamble.append("")
    if preamble_lines >= 2:
        preamble.append("Size Distribution")
    if preamble_lines >= 1:
        preamble.append(COLUMN_HEADER)

    rows = [
        f"{size:.6E}\t{count:.3E}\t0.000E+0\t0.000E+0\t0.000E+0"
        for size, count in zip(sizes, counts)
    ]
    trailer = ["", "-1.000E+0\t-1.000E+0", "Size Distribution (logarithmic)"]

    return "\n".join(preamble + rows + trailer) + "\n"


def peak_counts(n_rows, center, width=15.0, height=40):
    """Integer counts with a single Gaussian-shaped peak."""
    x = np.arange(n_rows)
    return np.round(height * np.exp(-0.5 * ((x - center) / width) ** 2)).astype(int)


@pytest.fixture
def make_nta_file(tmp_path):
    """Factory writing a synthetic ZetaView file into a temporary directory."""
    def _make(filename, counts, directory=None, **kwargs):
        directory = Path(directory) if directory else tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text(build_nta_content(counts, name=Path(filename).stem, **kwargs),
                        encoding="latin1")
        return str(path)
    return _make


@pytest.fixture
def nta_content():
    """Content builder for tests that parse file content directly."""
    return build_nta_content


@pytest.fixture
def run_schema():
    """Filename schema for '<date>_EV_<cell>_tau_<seed>_<timepoint>_<density>_<replicate>_size.txt'."""
    return FilenameSchema.from_dict({
        "arity": 9,
        "fields": {"date": 0, "cell_line": 2, "seed": 4, "timepoint": 5,
                   "density": 6, "replicate": 7},
        "patterns": {"seed": "^(seeded|unseeded)$", "density": "^\\d+k$"},
        "dimensions": {
            "replicate": ["replicate"],
            "density": ["density"],
            "seeding": ["seed"],
            "density_seeding": ["density", "seed"],
            "timepoint_seeding": ["timepoint", "seed"],
        },
    })


@pytest.fixture
def run_directory(tmp_path):
    """Run directory with five small files (20 data rows each), one of them empty."""
    directory = tmp_path / "run_20240312"
    directory.mkdir()

    samples = {
        "20240312_EV_HEK_tau_seeded_d3_50k_r1_size.txt": peak_counts(20, 8, 3.0),
        "20240312_EV_HEK_tau_seeded_d3_50k_r2_size.txt": peak_counts(20, 9, 3.0),
        "20240312_EV_HEK_tau_unseeded_d3_100k_r1_size.txt": peak_counts(20, 6, 2.0),
        "20240312_EV_HEK_tau_unseeded_d3_50k_r1_size.txt": peak_counts(20, 12, 2.0),
        "20240312_EV_HEK_tau_seeded_d7_50k_r1_size.txt": np.zeros(20, dtype=int),
    }
    for filename, counts in samples.items():
        (directory / filename).write_text(
            build_nta_content(counts, name=filename[:-4]), encoding="latin1"
        )

    return str(directory)


@pytest.fixture
def small_run_config():
    """Config for runs with 20 data rows and no console output."""
    return {"data_rows": 20, "verbose": False}
