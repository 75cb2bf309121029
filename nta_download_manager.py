"""
Download Manager for NTA Analysis
Handles statistics/proportion table export, metadata files and ZIP creation
"""

import os
import pandas as pd
from pathlib import Path
import zipfile
import io


def statistics_to_tsv(statistics_df):
    """Convert a statistics table (rows = statistic, columns = group) to TSV text."""
    return statistics_df.to_csv(sep='\t', index=True, float_format='%.3f')


def proportions_to_tsv(df):
    """Convert a proportion (or count) table to TSV text."""
    return df.to_csv(sep='\t', index=False)


def metadata_to_tsv(metadata_dict):
    """Convert metadata dictionary to tab-separated text format"""
    metadata_df = pd.DataFrame(
        [(k, v) for k, v in metadata_dict.items()],
        columns=['Field', 'Value']
    )
    return metadata_df.to_csv(sep='\t', index=False)


def skipped_to_tsv(dimension_results):
    """Table of groups skipped in any dimension, with the reason."""
    rows = []
    for name, result in dimension_results.items():
        for group, reason in result.get('skipped', {}).items():
            rows.append({'dimension': name, 'group': group, 'reason': reason})
    if not rows:
        return ""
    return pd.DataFrame(rows).to_csv(sep='\t', index=False)


def save_metadata_file(metadata, output_dir):
    """Write run metadata as a tab-delimited field/value file."""
    os.makedirs(output_dir, exist_ok=True)
    unique_id = metadata.get('persistentID', 'unknown')
    metadata_path = os.path.join(output_dir, f"Data_{unique_id}_metadata.txt")

    with open(metadata_path, 'w') as f:
        f.write(metadata_to_tsv(metadata))

    return metadata_path


def save_dimension_tables(dimension_results, output_dir, run_id):
    """
    Write statistics and proportion tables for every dimension.

    Returns:
    list: Paths of the created files
    """
    os.makedirs(output_dir, exist_ok=True)
    created_files = []

    for name, result in dimension_results.items():
        stats_path = os.path.join(output_dir, f"Stats_{run_id}_{name}.txt")
        with open(stats_path, 'w') as f:
            f.write(statistics_to_tsv(result['statistics']))
        created_files.append(stats_path)

        proportions_path = os.path.join(output_dir, f"Data_{run_id}_{name}_proportions.txt")
        with open(proportions_path, 'w') as f:
            f.write(proportions_to_tsv(result['proportions']))
        created_files.append(proportions_path)

    skipped_tsv = skipped_to_tsv(dimension_results)
    if skipped_tsv:
        skipped_path = os.path.join(output_dir, f"Skipped_{run_id}_groups.txt")
        with open(skipped_path, 'w') as f:
            f.write(skipped_tsv)
        created_files.append(skipped_path)

    return created_files


def create_download_zip(output_dir, run_id, dimension_results=None, metadata_dict=None):
    """
    Create a ZIP file with all analysis results.

    Includes:
    - Statistics and proportion tables per dimension (TSV)
    - Aggregated counts per dimension (TSV)
    - Metadata (TSV)
    - Plot PDFs found in output_dir (skips PNGs)

    Returns: bytes for download
    """
    zip_buffer = io.BytesIO()

    with zipfile.ZipFile(zip_buffer, 'w', zipfile.ZIP_DEFLATED) as zip_file:
        if dimension_results is not None:
            for name, result in dimension_results.items():
                zip_file.writestr(
                    f"data/statistics_{run_id}_{name}.txt",
                    statistics_to_tsv(result['statistics'])
                )
                zip_file.writestr(
                    f"data/proportions_{run_id}_{name}.txt",
                    proportions_to_tsv(result['proportions'])
                )
                zip_file.writestr(
                    f"data/counts_{run_id}_{name}.txt",
                    proportions_to_tsv(result['aggregated'])
                )

            skipped_tsv = skipped_to_tsv(dimension_results)
            if skipped_tsv:
                zip_file.writestr(f"data/skipped_{run_id}_groups.txt", skipped_tsv)

        if metadata_dict is not None:
            zip_file.writestr(f"data/metadata_{run_id}.txt", metadata_to_tsv(metadata_dict))

        output_path = Path(output_dir)
        if output_path.exists():
            for pdf_file in sorted(output_path.glob('Plot_*.pdf')):
                zip_file.write(pdf_file, arcname=f"plots/{pdf_file.name}")

    zip_buffer.seek(0)
    return zip_buffer.getvalue()


def get_all_output_files(output_dir):
    """
    Get all generated files organized by type.

    Returns dict with lists of (filename, path) tuples by category.
    """
    output_path = Path(output_dir)

    files = {
        'statistics': [],
        'data': [],
        'plots_pdf': [],
        'plots_png': [],
        'metadata': []
    }

    if not output_path.exists():
        return files

    for file_path in sorted(output_path.glob('*')):
        if not file_path.is_file():
            continue

        filename = file_path.name

        if filename.startswith('Stats_') and filename.endswith('.txt'):
            files['statistics'].append((filename, str(file_path)))
        elif filename.endswith('_metadata.txt'):
            files['metadata'].append((filename, str(file_path)))
        elif filename.startswith(('Data_', 'Skipped_')) and filename.endswith('.txt'):
            files['data'].append((filename, str(file_path)))
        elif filename.startswith('Plot_') and filename.endswith('.pdf'):
            files['plots_pdf'].append((filename, str(file_path)))
        elif filename.startswith('Plot_') and filename.endswith('.png'):
            files['plots_png'].append((filename, str(file_path)))

    return files
