"""
NTA Data Analysis - EV Size Distributions per Experimental Grouping

Pipeline for one experimental run (one directory of ZetaView files):
- File ingestion: fixed preamble, fixed number of (size, count) rows per file
- Column labeling: grouping keys from filenames via a declarative schema
- Aggregation: bin-wise sum of counts over files sharing a grouping key
- Normalization: each group divided by its own maximum (proportion curve)
- Statistics: mean, median, mode, D10/D50/D90 of the count-weighted sample
- Dispersion: per-bin mean and SD of proportions across groups

Every grouping dimension (replicate, density, seeding, combinations, ...)
repeats aggregation, normalization, statistics and dispersion independently.
"""

import os

import numpy as np
import pandas as pd

import nta_download_manager
import nta_plots
from nta_errors import DegenerateSeriesError, EmptySampleError
from nta_labels import FilenameSchema, label_columns, load_schema, parse_filenames
from nta_reader import (
    DATA_ROWS,
    PREAMBLE_LINES,
    find_nta_files,
    load_run,
    summarize_run_metadata,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

CONFIG = {
    "directory": ".",
    "file_identifier": ".txt",
    "output_subdirs": ["metadata", "processed"],
    "preamble_lines": PREAMBLE_LINES,
    "data_rows": DATA_ROWS,
    "validate_bin_axis": True,
    "group_joiner": " ",
    "dimensions": {},
    "smoothing_sigma": 2.0,
    "reference_lines": True,
    "size_limits_nm": (0, 500),
    "verbose": True,
    "project_metadata": {
        "experimenter": "Your_Initials",
        "location": "Your_Lab_Location",
        "project": "EV_tau_seeding",
        "pi": "Principal_Investigator_Initials",
        "data_collection_method": "NTA",
    }
}

STATISTIC_NAMES = ['mean', 'median', 'mode', 'D10', 'D50', 'D90', 'span', 'total_count']


def resolve_config(config=None):
    """Return a copy of CONFIG updated with the given overrides."""
    merged = dict(CONFIG)
    if config:
        merged.update(config)
    return merged


def set_data_directory(directory_path):
    """
    Set the data directory in CONFIG and create the output subdirectories.

    Returns:
    bool: True if directory exists and was set, False otherwise
    """
    if not os.path.isdir(directory_path):
        print(f"Error: Directory not found: {directory_path}")
        return False

    CONFIG["directory"] = directory_path

    for subdir in CONFIG["output_subdirs"]:
        os.makedirs(os.path.join(directory_path, subdir), exist_ok=True)

    print(f"Data directory set to: {directory_path}")
    return True


def _print_banner(title):
    print("\n" + "=" * 80)
    print(title)
    print("=" * 80)


# ============================================================================
# AGGREGATION
# ============================================================================

def aggregate_counts(counts_df, labels, size_column='size_nm'):
    """
    Sum raw counts bin-wise over all files that share a group key.

    Parameters:
    counts_df (DataFrame): size column plus one count column per file
    labels (list): Group key per file column, in column order

    Returns:
    DataFrame: size column plus one summed count column per group key,
        groups in first-seen order
    """
    file_columns = [c for c in counts_df.columns if c != size_column]
    if len(labels) != len(file_columns):
        raise ValueError(f"Got {len(labels)} labels for {len(file_columns)} file columns")
    if size_column in labels:
        raise ValueError(f"Group key '{size_column}' collides with the size column")

    aggregated = pd.DataFrame({size_column: counts_df[size_column].values})

    for key in dict.fromkeys(labels):
        columns = [col for col, label in zip(file_columns, labels) if label == key]
        aggregated[key] = counts_df[columns].sum(axis=1).values

    return aggregated


# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize_series(series, group_key=None):
    """
    Divide a count series by its own maximum, giving a proportion curve in [0, 1].

    Raises:
    DegenerateSeriesError: the series is empty or its maximum is zero
    """
    if group_key is None:
        group_key = getattr(series, 'name', None)

    values = np.asarray(series, dtype=float)
    if values.size == 0 or not np.nanmax(values) > 0:
        raise DegenerateSeriesError(group_key)

    return pd.Series(values / values.max(), index=getattr(series, 'index', None), name=group_key)


def normalize_groups(aggregated_df, size_column='size_nm', skip_degenerate=False):
    """
    Normalize every group column of an aggregated table.

    With skip_degenerate, all-zero groups are left out of the result and
    reported instead of raising.

    Returns:
    tuple: (proportions_df, skipped) where skipped maps group key -> reason
    """
    proportions = pd.DataFrame({size_column: aggregated_df[size_column].values})
    skipped = {}

    for key in aggregated_df.columns:
        if key == size_column:
            continue
        try:
            proportions[key] = normalize_series(aggregated_df[key], key).values
        except DegenerateSeriesError as e:
            if not skip_degenerate:
                raise
            skipped[key] = str(e)

    return proportions, skipped


# ============================================================================
# STATISTICS
# ============================================================================

def expand_weighted_sample(sizes, counts):
    """Pseudo-sample with every size repeated by its particle count."""
    counts = np.asarray(counts)
    if np.any(counts < 0):
        raise ValueError("Counts must be non-negative")
    return np.repeat(np.asarray(sizes, dtype=float), counts.astype(np.int64))


def calculate_sample_statistics(sizes, counts, group_key=None):
    """
    Descriptive statistics of the count-weighted size sample.

    Mode is the smallest size among the bins with the highest count.
    Percentiles use linear interpolation between order statistics.

    Returns:
    dict: mean, median, mode, D10, D50, D90, span, total_count

    Raises:
    EmptySampleError: total count is zero
    """
    sizes = np.asarray(sizes, dtype=float)
    counts = np.asarray(counts)

    sample = expand_weighted_sample(sizes, counts)
    if sample.size == 0:
        raise EmptySampleError(group_key)

    order = np.argsort(sizes, kind='stable')
    mode = sizes[order][np.argmax(counts[order])]

    d10, d50, d90 = np.percentile(sample, [10, 50, 90])
    span = (d90 - d10) / d50 if d50 > 0 else np.nan

    return {
        'mean': float(np.mean(sample)),
        'median': float(np.median(sample)),
        'mode': float(mode),
        'D10': float(d10),
        'D50': float(d50),
        'D90': float(d90),
        'span': float(span),
        'total_count': int(sample.size),
    }


def calculate_group_statistics(aggregated_df, size_column='size_nm', verbose=False):
    """
    Statistics table for every group of an aggregated table.

    Groups with zero total count are skipped and reported.

    Returns:
    tuple: (statistics_df, skipped)
        statistics_df has one row per statistic and one column per group
    """
    sizes = aggregated_df[size_column].values
    columns = {}
    skipped = {}

    for key in aggregated_df.columns:
        if key == size_column:
            continue
        try:
            columns[key] = calculate_sample_statistics(sizes, aggregated_df[key].values, key)
        except EmptySampleError as e:
            skipped[key] = str(e)
            if verbose:
                print(f"    ✗ {e}")
            continue

        if verbose:
            stats = columns[key]
            print(f"    ✓ {key}: mode {stats['mode']:.1f} nm, "
                  f"D10/D50/D90 {stats['D10']:.1f}/{stats['D50']:.1f}/{stats['D90']:.1f} nm")

    statistics_df = pd.DataFrame(columns, index=STATISTIC_NAMES)
    statistics_df.index.name = 'statistic'
    return statistics_df, skipped


# ============================================================================
# DISPERSION ACROSS GROUPS
# ============================================================================

def calculate_dispersion(proportions_df, groups=None, size_column='size_nm'):
    """
    Per-bin mean and standard deviation of proportions across groups.

    The SD uses ddof=1, so it is NaN when only one group is present;
    plotting treats that as a zero-width error bar.
    """
    if groups is None:
        groups = [c for c in proportions_df.columns if c != size_column]
    if not groups:
        raise ValueError("No groups to calculate dispersion across")

    values = proportions_df[list(groups)]

    return pd.DataFrame({
        size_column: proportions_df[size_column].values,
        'proportion_mean': values.mean(axis=1).values,
        'proportion_sd': values.std(axis=1, ddof=1).values,
        'n_groups': len(groups),
    })


# ============================================================================
# PIPELINE
# ============================================================================

def analyze_dimension(counts_df, records, roles, name=None, joiner=" ", verbose=True):
    """
    Aggregate, normalize and summarize one grouping dimension.

    Degenerate (all-zero) groups are reported in 'skipped' and left out of
    proportions, dispersion and statistics; the other groups continue.

    Returns:
    dict: labels, aggregated, proportions, dispersion, statistics, skipped
    """
    name = name or '_'.join(roles)
    if verbose:
        print(f"\n  Dimension '{name}' ({' × '.join(roles)}):")

    labels = label_columns(records, roles, joiner)
    aggregated = aggregate_counts(counts_df, labels)

    proportions, skipped = normalize_groups(aggregated, skip_degenerate=True)
    if verbose:
        for reason in skipped.values():
            print(f"    ✗ {reason}")

    valid_aggregated = aggregated.drop(columns=list(skipped))
    statistics, empty = calculate_group_statistics(valid_aggregated, verbose=verbose)
    skipped.update(empty)

    groups = [c for c in proportions.columns if c != 'size_nm']
    dispersion = calculate_dispersion(proportions, groups) if groups else None

    return {
        'name': name,
        'roles': list(roles),
        'labels': labels,
        'aggregated': aggregated,
        'proportions': proportions,
        'dispersion': dispersion,
        'statistics': statistics,
        'skipped': skipped,
    }


def run_analysis_pipeline(directory, schema, config=None):
    """
    Run the complete analysis for one experimental run directory.

    Parameters:
    directory (str): Directory with one raw ZetaView file per sample
    schema (FilenameSchema or str): Filename schema or path to its JSON file
    config (dict): Overrides for CONFIG (optional)

    Returns:
    dict: Results with counts, file records, per-dimension results and metadata
    """
    config = resolve_config(config)
    verbose = config["verbose"]

    if isinstance(schema, str):
        schema = load_schema(schema)
    if not isinstance(schema, FilenameSchema):
        raise TypeError("schema must be a FilenameSchema or a path to a schema JSON file")

    filepaths = find_nta_files(directory, config["file_identifier"])
    filenames = [os.path.basename(p) for p in filepaths]

    if verbose:
        _print_banner("COLUMN LABELING")
        print(f"Validating {len(filenames)} filenames against {schema.describe()}")
    records = parse_filenames(filenames, schema)

    if verbose:
        _print_banner("FILE INGESTION")
    counts_df, filenames, all_files_metadata = load_run(
        filepaths,
        preamble_lines=config["preamble_lines"],
        data_rows=config["data_rows"],
        validate_bin_axis=config["validate_bin_axis"],
        verbose=verbose,
    )

    dimensions = schema.dimensions or config["dimensions"]
    if not dimensions:
        raise ValueError("No grouping dimensions configured in schema or config")

    if verbose:
        _print_banner("AGGREGATION, NORMALIZATION & STATISTICS")

    dimension_results = {}
    for name, roles in dimensions.items():
        dimension_results[name] = analyze_dimension(
            counts_df, records, roles, name, config["group_joiner"], verbose
        )

    run_id = config.get("run_id") or os.path.basename(os.path.normpath(directory))
    metadata, quality_alerts = summarize_run_metadata(all_files_metadata, run_id, config)
    metadata['dimensions'] = ', '.join(dimension_results)

    if verbose:
        for alert in quality_alerts:
            print(f"⚠ QC alert: {alert}")
        _print_banner("ANALYSIS COMPLETE")

    return {
        'run_id': run_id,
        'counts': counts_df,
        'filenames': filenames,
        'records': records,
        'dimensions': dimension_results,
        'metadata': metadata,
        'quality_alerts': quality_alerts,
        'all_file_metadata': all_files_metadata,
    }


# ============================================================================
# MAIN ANALYZER CLASS
# ============================================================================

class NTAAnalyzer:
    """
    Main analysis class for one experimental run.

    Workflow:
    1. Validate filenames against the run's schema
    2. Read all raw files into one count table
    3. Aggregate, normalize and summarize every grouping dimension
    4. Save tables, metadata and plots
    """

    def __init__(self, config=None):
        self.config = resolve_config(config)
        self.results = {}

    def process(self, directory, schema):
        """Run the full pipeline on a run directory."""
        self.results = run_analysis_pipeline(directory, schema, self.config)
        return self.results

    def get_statistics(self, dimension):
        """Statistics table (rows = statistic, columns = group) for one dimension."""
        if 'dimensions' not in self.results:
            raise RuntimeError("No results. Run process() first.")
        return self.results['dimensions'][dimension]['statistics']

    def save_outputs(self, output_dir):
        """Save tables, metadata and plots for every dimension."""
        if 'dimensions' not in self.results:
            raise RuntimeError("No results. Run process() first.")

        os.makedirs(output_dir, exist_ok=True)
        run_id = self.results['run_id']

        created_files = nta_download_manager.save_dimension_tables(
            self.results['dimensions'], output_dir, run_id
        )
        created_files.append(
            nta_download_manager.save_metadata_file(self.results['metadata'], output_dir)
        )

        success, plot_files = nta_plots.generate_dimension_plots(
            self.results['dimensions'], run_id, output_dir, self.config
        )
        if not success:
            raise RuntimeError(f"Failed to create plots: {plot_files}")
        created_files.extend(plot_files)

        return created_files
