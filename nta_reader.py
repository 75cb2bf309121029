"""
NTA Data Analysis - File Ingestor

Reads raw ZetaView size distribution files for one experimental run:
- fixed-length instrument preamble (metadata, harvested but not used in calculations)
- fixed number of data rows: diameter (nm) and particle count

All files of a run are combined into one wide count table with a shared
size axis and one count column per file.
"""

import os
import re
import json
import ntpath
from datetime import date

import numpy as np
import pandas as pd

from nta_errors import MalformedInputError


PREAMBLE_LINES = 76
DATA_ROWS = 1200


# ============================================================================
# FILE DISCOVERY & READING
# ============================================================================

def find_nta_files(directory, file_identifier=".txt"):
    """
    Find NTA data files in a run directory.

    Returns:
    list: Sorted full paths of all files ending with file_identifier
    """
    if not os.path.isdir(directory):
        raise MalformedInputError(directory, "data directory not found")

    nta_files = sorted(f for f in os.listdir(directory) if f.endswith(file_identifier))
    return [os.path.join(directory, f) for f in nta_files]


def read_nta_file(filepath):
    """Read an NTA data file with the instrument's latin1 encoding."""
    try:
        with open(filepath, 'r', encoding='latin1') as file:
            return file.read()
    except OSError as e:
        raise MalformedInputError(filepath, f"could not read file: {e}") from e


# ============================================================================
# DATA EXTRACTION
# ============================================================================

def _parse_data_row(line):
    """Return (size, count) for a numeric data row, or None if the line is not one."""
    tokens = line.split()
    if len(tokens) < 2:
        return None
    try:
        return float(tokens[0]), float(tokens[1])
    except ValueError:
        return None


def parse_measurement(content, filename, preamble_lines=PREAMBLE_LINES, data_rows=DATA_ROWS):
    """
    Extract the size/count table from the content of one file.

    Exactly preamble_lines lines are skipped and exactly data_rows rows are read.
    The first column is the diameter in nm, the second the particle count.

    Parameters:
    content (str): Full file content
    filename (str): Name used in error messages
    preamble_lines (int): Number of metadata lines before the data table
    data_rows (int): Number of data rows to read

    Returns:
    DataFrame: Columns 'size_nm' (float) and 'count' (int)
    """
    lines = content.splitlines()

    if len(lines) < preamble_lines:
        raise MalformedInputError(
            filename, f"file has {len(lines)} lines, shorter than the {preamble_lines}-line preamble"
        )

    # The preamble must end exactly where the data starts
    if preamble_lines > 0 and _parse_data_row(lines[preamble_lines - 1]) is not None:
        raise MalformedInputError(
            filename, f"preamble length mismatch: line {preamble_lines} already contains data"
        )

    data_lines = lines[preamble_lines:preamble_lines + data_rows]
    if len(data_lines) < data_rows:
        raise MalformedInputError(
            filename, f"expected {data_rows} data rows, found {len(data_lines)}"
        )

    rows = []
    for i, line in enumerate(data_lines):
        row = _parse_data_row(line)
        if row is None:
            if i == 0:
                raise MalformedInputError(
                    filename, f"preamble length mismatch: line {preamble_lines + 1} is not a data row"
                )
            raise MalformedInputError(
                filename, f"malformed data row at line {preamble_lines + i + 1}: {line.strip()!r}"
            )
        rows.append(row)

    df = pd.DataFrame(rows, columns=['size_nm', 'count'])

    counts = df['count'].values
    if not np.all(np.isfinite(counts)):
        raise MalformedInputError(filename, "non-finite particle counts")
    if np.any(counts < 0):
        raise MalformedInputError(filename, "negative particle counts")
    if not np.allclose(counts, np.round(counts)):
        raise MalformedInputError(filename, "particle counts are not whole numbers")

    df['count'] = np.round(counts).astype(np.int64)
    return df


def load_run(filepaths, preamble_lines=PREAMBLE_LINES, data_rows=DATA_ROWS,
             validate_bin_axis=True, verbose=True):
    """
    Read every file of a run into one wide count table.

    The size axis of the first file is the canonical bin axis for the run.
    Every further file is compared with it: a mismatch raises
    MalformedInputError when validate_bin_axis is set, otherwise it is
    reported and the first file's axis is used.

    Returns:
    tuple: (counts_df, filenames, all_files_metadata)
        counts_df has 'size_nm' plus one count column per file (input order)
    """
    if not filepaths:
        raise MalformedInputError("<run>", "no input files found")

    counts_df = None
    filenames = []
    all_files_metadata = {}

    for filepath in filepaths:
        filename = os.path.basename(filepath)
        content = read_nta_file(filepath)
        measurement = parse_measurement(content, filepath, preamble_lines, data_rows)

        if filename in all_files_metadata:
            raise MalformedInputError(filepath, "duplicate filename within run")

        if counts_df is None:
            counts_df = pd.DataFrame({'size_nm': measurement['size_nm'].values})
        elif not np.allclose(measurement['size_nm'].values, counts_df['size_nm'].values):
            if validate_bin_axis:
                raise MalformedInputError(
                    filepath, "size bins differ from the first file of the run"
                )
            if verbose:
                print(f"  ⚠ {filename}: size bins differ from first file, using first file's axis")

        counts_df[filename] = measurement['count'].values
        filenames.append(filename)
        all_files_metadata[filename] = extract_preamble_metadata(
            content, filename, preamble_lines
        )

        if verbose:
            print(f"  ✓ {filename}: {int(measurement['count'].sum())} particles")

    return counts_df, filenames, all_files_metadata


# ============================================================================
# PREAMBLE METADATA
# ============================================================================

METADATA_PATTERNS = [
    ('original_file', r'Original File:\s+(.+?)(?:\s+Section:|$)'),
    ('operator', r'Operator:\s+(.+)'),
    ('experiment', r'Experiment:\s+(.+)'),
    ('zetaview_sn', r'ZetaView S/N:\s+(.+)'),
    ('cell_sn', r'Cell S/N:\s+(.+)'),
    ('software', r'Software:\s+(.+?)(?:\s+Analyze:|$)'),
    ('sop', r'SOP:\s+(.+)'),
    ('sample', r'Sample:\s+(.+)'),
    ('electrolyte', r'Electrolyte:(?:[ \t]*(.*?))?(?:\r?\n|$)'),
    ('ph', r'pH:\s+(.+?)(?:\s+entered|$)'),
    ('conductivity', r'Conductivity:\s+(.+?)(?:\s+sensed|$)'),
    ('temperature', r'Temperature:\s+(.+?)(?:\s+sensed|$)'),
    ('viscosity', r'Viscosity:\s+(.+)'),
    ('date', r'Date:\s+(.+)'),
    ('time', r'Time:\s+(.+)'),
    ('remarks', r'Remarks:\s+(.+)'),
    ('particle_drift_check_result', r'Particle Drift Check Result:\s+(.+)'),
    ('cell_check_result', r'Cell Check Result:\s+(.+)'),
    ('positions', r'Positions:\s+(.+)'),
    ('number_of_traces', r'Number of Traces:\s+(\d+)'),
    ('average_number_of_particles', r'Average Number of Particles:\s+(\d+\.\d+)'),
    ('dilution', r'Dilution::\s+(\d+(?:\.\d+)?)'),
    ('laser_wavelength', r'Laser Wavelength nm:\s+(\d+\.\d+)'),
    ('cycles', r'#Cycles\s+(\d+)'),
    ('sensitivity', r'Sensitivity:\s+(.+)'),
    ('shutter', r'Shutter:\s+(.+)'),
]


def extract_preamble_metadata(content, filename, preamble_lines=PREAMBLE_LINES):
    """
    Extract instrument metadata fields from the preamble of one file.
    Fields that are missing or empty are left out.
    """
    preamble = '\n'.join(content.splitlines()[:preamble_lines])

    metadata = {}
    for key, pattern in METADATA_PATTERNS:
        match = re.search(pattern, preamble, re.MULTILINE)
        if match and match.group(1):
            value = match.group(1).strip()
            if value and value.lower() not in ['none', 'null']:
                metadata[key] = value

    metadata['filename'] = filename

    original_file = metadata.get('original_file', '')
    if original_file:
        metadata['avi_filename'] = ntpath.basename(original_file)

    return metadata


def analyze_field_differences(all_files_metadata):
    """
    Split metadata fields into those identical across all files and those that differ.

    Returns:
    tuple: (identical_fields, different_fields)
        identical_fields maps field -> value,
        different_fields maps field -> list of values (one per file that has it)
    """
    all_field_names = set()
    for metadata in all_files_metadata.values():
        all_field_names.update(metadata.keys())

    identical_fields = {}
    different_fields = {}

    for field_name in sorted(all_field_names):
        values = [m[field_name] for m in all_files_metadata.values() if field_name in m]
        present_everywhere = len(values) == len(all_files_metadata)

        if present_everywhere and len(set(values)) == 1:
            identical_fields[field_name] = values[0]
        else:
            different_fields[field_name] = values

    return identical_fields, different_fields


def _quality_alerts(identical_fields, different_fields):
    """Collect quality-control alerts for a run."""
    alerts = []

    drift_values = different_fields.get('particle_drift_check_result')
    if drift_values is None and 'particle_drift_check_result' in identical_fields:
        drift_values = [identical_fields['particle_drift_check_result']]
    if drift_values:
        bad_values = sorted({v for v in drift_values if v not in ['Good', 'Very Good']})
        if bad_values:
            alerts.append(f"particle_drift_check_result: {', '.join(bad_values)} (not 'Good' or 'Very Good')")

    if 'dilution' in different_fields:
        alerts.append(f"dilution: differs between files {json.dumps(different_fields['dilution'])}")

    if 'temperature' in different_fields:
        try:
            temperatures = [float(v.split()[0]) for v in different_fields['temperature']]
        except (ValueError, IndexError):
            temperatures = []
        if temperatures and max(temperatures) - min(temperatures) > 1.0:
            alerts.append(f"temperature: range {max(temperatures) - min(temperatures):.2f} °C exceeds 1 °C")

    return alerts


def summarize_run_metadata(all_files_metadata, run_id, config=None):
    """
    Create the run-level metadata dictionary.

    Combines project metadata from config, fields shared by all files,
    the list of source files and quality-control alerts.
    """
    identical_fields, different_fields = analyze_field_differences(all_files_metadata)

    project_meta = {}
    if config and "project_metadata" in config:
        project_meta = config["project_metadata"]

    metadata = {
        'persistentID': run_id,
        'experimenter': project_meta.get('experimenter', 'Your_Initials'),
        'location': project_meta.get('location', 'Your_Lab_Location'),
        'project': project_meta.get('project', 'Your_Project_Name'),
        'pi': project_meta.get('pi', 'Your_PI_Initials'),
        'data_collection_method': project_meta.get('data_collection_method', 'NTA'),
        'nta_instrument': 'ZetaView',
        'num_files': len(all_files_metadata),
        'source_files': json.dumps(list(all_files_metadata.keys())),
    }

    file_specific_fields = {'filename', 'avi_filename', 'original_file', 'time', 'experiment'}
    for field_name, value in identical_fields.items():
        if field_name not in file_specific_fields:
            metadata[f'nta_{field_name}'] = value

    alerts = _quality_alerts(identical_fields, different_fields)
    if alerts:
        metadata['quality_control_alerts'] = json.dumps(alerts)

    metadata['python_analysis'] = str(date.today())

    return metadata, alerts
