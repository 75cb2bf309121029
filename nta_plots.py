# ============================================================================
# NTA PLOTTING FUNCTIONS - PROPORTION CURVES PER GROUPING DIMENSION
# ============================================================================
# Proportion-vs-size line charts with optional Gaussian smoothing, SD error
# bars across groups and D10 / mode / D90 reference lines
# ============================================================================

import os
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.lines import Line2D
from scipy.ndimage import gaussian_filter1d


REFERENCE_LINE_STYLES = [
    ('D10', ':', 1.2),
    ('mode', '-', 1.8),
    ('D90', '--', 1.2),
]


def smooth_curve(values, sigma):
    """Gaussian smoothing of a curve; sigma <= 0 returns the values unchanged."""
    values = np.asarray(values, dtype=float)
    if not sigma or sigma <= 0:
        return values.copy()
    return gaussian_filter1d(values, sigma=sigma, mode='nearest')


def add_dispersion_error_bars(ax, dispersion_df, sigma=0, color='#4C5B5C'):
    """
    Add the mean proportion curve with SD error bars across groups.
    Bins with undefined SD (single group) get zero-width error bars.
    """
    sizes = dispersion_df['size_nm'].values
    mean = smooth_curve(dispersion_df['proportion_mean'].values, sigma)
    sd = np.nan_to_num(dispersion_df['proportion_sd'].values.astype(float), nan=0.0)

    # Thin out the bars so dense bin axes stay readable
    errorevery = max(1, len(sizes) // 60)

    ax.errorbar(sizes, mean, yerr=sd, fmt='-', color=color, ecolor=color,
                linewidth=2.5, elinewidth=1, capsize=2, alpha=0.8,
                errorevery=errorevery, zorder=4)

    n_groups = int(dispersion_df['n_groups'].iloc[0]) if len(dispersion_df) else 0
    return [Line2D([0], [0], color=color, linestyle='-', linewidth=2.5,
                   label=f'Mean ± SD (n={n_groups} groups)')]


def add_reference_lines(ax, statistics_df, group_colors):
    """Add D10, mode and D90 vertical lines for every group with statistics."""
    legend_elements = []

    for group, color in group_colors.items():
        if group not in statistics_df.columns:
            continue
        for stat_name, style, width in REFERENCE_LINE_STYLES:
            value = statistics_df.loc[stat_name, group]
            if not np.isnan(value):
                ax.axvline(x=value, color=color, linestyle=style, linewidth=width,
                           alpha=0.6, zorder=3)

    if group_colors:
        legend_elements.extend(
            Line2D([0], [0], color='gray', linestyle=style, linewidth=width, label=stat_name)
            for stat_name, style, width in REFERENCE_LINE_STYLES
        )

    return legend_elements


def create_proportion_plot(proportions_df, dispersion_df=None, statistics_df=None,
                           title=None, config=None):
    """
    Create a proportion-vs-size line chart for the groups of one dimension.

    Parameters:
    proportions_df (DataFrame): 'size_nm' plus one proportion column per group
    dispersion_df (DataFrame): Per-bin mean/SD across groups (optional)
    statistics_df (DataFrame): Statistics table, used for reference lines (optional)
    title (str): Plot title
    config (dict): smoothing_sigma, reference_lines, size_limits_nm

    Returns:
    Figure
    """
    config = config or {}
    sigma = config.get('smoothing_sigma', 0)
    size_limits = config.get('size_limits_nm')

    groups = [c for c in proportions_df.columns if c != 'size_nm']
    sizes = proportions_df['size_nm'].values

    fig, ax = plt.subplots(figsize=(12, 7))

    cmap = plt.get_cmap('tab10')
    group_colors = {group: cmap(i % 10) for i, group in enumerate(groups)}

    for group in groups:
        ax.plot(sizes, smooth_curve(proportions_df[group].values, sigma),
                color=group_colors[group], linewidth=1.8, alpha=0.9, label=str(group))

    extra_legend = []
    if dispersion_df is not None:
        extra_legend.extend(add_dispersion_error_bars(ax, dispersion_df, sigma))

    if statistics_df is not None and config.get('reference_lines', True):
        extra_legend.extend(add_reference_lines(ax, statistics_df, group_colors))

    handles, _ = ax.get_legend_handles_labels()
    ax.legend(handles=handles + extra_legend, loc='upper right', fontsize=9, framealpha=0.95)

    ax.set_xlabel('Size (nm)', fontsize=12, fontweight='bold')
    ax.set_ylabel('Proportion (count / max count)', fontsize=12, fontweight='bold')
    if title:
        ax.set_title(title, fontsize=13, fontweight='bold', pad=15)

    if size_limits:
        ax.set_xlim(list(size_limits))
    ax.set_ylim([0, 1.05])
    ax.grid(True, alpha=0.3, linestyle='--', linewidth=0.5)
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)
    ax.tick_params(labelsize=10)

    plt.tight_layout()
    return fig


def generate_dimension_plots(dimension_results, run_id, output_dir=None, config=None):
    """
    Create and save one proportion plot per grouping dimension (PDF and PNG).

    Returns:
    tuple: (success_flag, created_files or error message)
    """
    if not dimension_results:
        return False, "No dimension results available for plotting"

    if output_dir is None:
        if config is not None and "directory" in config:
            output_dir = os.path.join(config["directory"], "processed")
        else:
            output_dir = os.path.join(os.getcwd(), "processed")

    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        return False, f"Failed to create output directory: {str(e)}"

    verbose = (config or {}).get('verbose', True)
    created_files = []

    for name, result in dimension_results.items():
        proportions = result['proportions']
        if len(proportions.columns) < 2:
            if verbose:
                print(f"  Warning: No groups to plot for dimension '{name}'")
            continue

        fig = create_proportion_plot(
            proportions,
            dispersion_df=result.get('dispersion'),
            statistics_df=result.get('statistics'),
            title=f"{run_id}: particle size by {name.replace('_', ' ')}",
            config=config,
        )

        base_filename = f"Plot_{run_id}_{name}"
        try:
            pdf_path = os.path.join(output_dir, f"{base_filename}.pdf")
            fig.savefig(pdf_path, bbox_inches='tight', dpi=300)

            png_path = os.path.join(output_dir, f"{base_filename}.png")
            fig.savefig(png_path, bbox_inches='tight', dpi=300)
        finally:
            plt.close(fig)

        created_files.extend([pdf_path, png_path])
        if verbose:
            print(f"  ✓ Saved: {base_filename}.pdf/.png")

    return True, created_files
