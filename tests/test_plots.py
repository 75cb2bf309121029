"""Tests for proportion plots."""

import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from nta_analyzer import analyze_dimension
from nta_plots import create_proportion_plot, generate_dimension_plots, smooth_curve


@pytest.fixture
def dimension_result():
    sizes = np.arange(0.5, 40.5, 1.0)
    counts_df = pd.DataFrame({
        'size_nm': sizes,
        'r1.txt': np.round(30 * np.exp(-0.5 * ((sizes - 12) / 4) ** 2)).astype(int),
        'r2.txt': np.round(25 * np.exp(-0.5 * ((sizes - 15) / 5) ** 2)).astype(int),
    })
    records = [{'replicate': 'r1'}, {'replicate': 'r2'}]
    return analyze_dimension(counts_df, records, ['replicate'], verbose=False)


def test_smooth_curve_without_sigma_is_identity():
    values = np.array([0.0, 1.0, 0.0])
    smoothed = smooth_curve(values, 0)
    np.testing.assert_array_equal(smoothed, values)
    assert smoothed is not values


def test_smooth_curve_keeps_length_and_mass():
    values = np.zeros(50)
    values[25] = 1.0
    smoothed = smooth_curve(values, 2.0)

    assert len(smoothed) == 50
    assert smoothed.max() < 1.0
    assert smoothed.sum() == pytest.approx(1.0)


def test_create_proportion_plot(dimension_result):
    fig = create_proportion_plot(
        dimension_result['proportions'],
        dispersion_df=dimension_result['dispersion'],
        statistics_df=dimension_result['statistics'],
        title="replicates",
        config={'smoothing_sigma': 1.0, 'size_limits_nm': (0, 40)},
    )

    ax = fig.axes[0]
    assert ax.get_title() == "replicates"
    assert ax.get_xlim() == (0.0, 40.0)
    # two group lines plus D10/mode/D90 per group
    assert len(ax.lines) >= 2 + 6
    plt.close(fig)


def test_single_group_plot_tolerates_nan_sd():
    proportions = pd.DataFrame({'size_nm': [1.0, 2.0, 3.0], 'only': [0.2, 1.0, 0.4]})
    dispersion = pd.DataFrame({
        'size_nm': [1.0, 2.0, 3.0],
        'proportion_mean': [0.2, 1.0, 0.4],
        'proportion_sd': [np.nan, np.nan, np.nan],
        'n_groups': [1, 1, 1],
    })

    fig = create_proportion_plot(proportions, dispersion_df=dispersion)
    assert len(fig.axes[0].containers) == 1
    plt.close(fig)


def test_generate_dimension_plots(tmp_path, dimension_result):
    success, created = generate_dimension_plots(
        {'replicate': dimension_result}, 'run1', str(tmp_path), {'verbose': False}
    )

    assert success
    assert sorted(os.path.basename(p) for p in created) == [
        'Plot_run1_replicate.pdf', 'Plot_run1_replicate.png'
    ]
    assert all(os.path.exists(p) for p in created)


def test_generate_dimension_plots_without_results(tmp_path):
    success, message = generate_dimension_plots({}, 'run1', str(tmp_path))
    assert not success
    assert "No dimension results" in message
