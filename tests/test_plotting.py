import matplotlib.pyplot as plt
import pytest

from trackergeo.geometry_extraction.extractor import extract
from trackergeo.geometry_extraction.plotting import (
    plot_radiation_lengths,
    plot_rz_view,
    radiation_length_histograms,
)
from trackergeo.geometry_extraction.records import RecordCollector


@pytest.fixture
def records(flat_tracker, material_table, config):
    return extract(flat_tracker, material_table, config=config, verbose=False)


def test_radiation_length_histograms(records):
    barrel, endcap = radiation_length_histograms(records)
    [summary] = records.radiation_lengths
    assert barrel.values()[0] == pytest.approx(summary.radiation_length)
    assert endcap.values().sum() == 0


def test_histograms_of_empty_records():
    barrel, endcap = radiation_length_histograms(RecordCollector())
    assert barrel.values().sum() == 0 and endcap.values().sum() == 0


def test_rz_view(records, config, tmp_path):
    fig, ax = plot_rz_view(records, config, output_prefix=str(tmp_path / "geo"))
    assert (tmp_path / "geo_rz.png").exists()
    assert ax.patches
    plt.close(fig)


def test_radiation_length_plot(records, tmp_path):
    fig = plot_radiation_lengths(records, output_prefix=str(tmp_path / "geo"))
    assert (tmp_path / "geo_radlength.pdf").exists()
    plt.close(fig)
