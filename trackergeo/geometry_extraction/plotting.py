import matplotlib.pyplot as plt
import hist
import mplhep as hep
from matplotlib.patches import Rectangle

from trackergeo.detector_config import ExtractorConfig
from .records import RecordCollector, ShapeType


def _selected_parts(records: RecordCollector, config: ExtractorConfig, key):
    try:
        return records.selector(config.tag(key) + config.tag('par_tail')).part_selectors
    except KeyError:
        return []


def _add_tube(ax, shape, z_center, **kwargs):
    ax.add_patch(Rectangle((z_center - shape.dz, shape.rmin), 2 * shape.dz, shape.rmax - shape.rmin, **kwargs))


def plot_rz_view(records: RecordCollector, config: ExtractorConfig = None, namespace=None, output_prefix=None,
                 show=False):
    """
    r-z cross section of the extracted geometry: container outlines, barrel
    layer tubes and endcap disc tubes (mirrored to z-).

    Parameters:
    -----------
    records : RecordCollector
        Merged output of an extraction
    config : ExtractorConfig, optional
        Naming tags used to find containers, layers and discs
    namespace : str, optional
        Namespace of the extracted volumes, defaults to the configured one
    output_prefix : str, optional
        If provided, save the plot as <prefix>_rz.png and .pdf
    show : bool
        Display the figure
    """
    config = config if config is not None else ExtractorConfig()
    namespace = namespace if namespace is not None else config.tag('namespace')
    plt.style.use(hep.style.CMS)
    fig, ax = plt.subplots(figsize=(15, 8))

    for shape in records.shapes:
        if shape.type is not ShapeType.POLYCONE:
            continue
        offset = config.z_pixfwd if shape.name == config.tag('endcap_container') else 0.0
        points = list(shape.rz_up) + list(reversed(shape.rz_down))
        points.append(points[0])
        r = [p[0] for p in points]
        z = [p[1] + offset for p in points]
        ax.plot(z, r, '--', color='black', linewidth=1.5, label=shape.name)

    for name in _selected_parts(records, config, 'barrel_layer'):
        _add_tube(ax, records.shape(name), 0.0, facecolor='tab:blue', alpha=0.5)

    for name in _selected_parts(records, config, 'endcap_wheel'):
        shape = records.shape(name)
        for placement in records.placements_of(f"{namespace}:{name}"):
            z = placement.translation[2] + config.z_pixfwd
            _add_tube(ax, shape, z, facecolor='tab:orange', alpha=0.5)
            _add_tube(ax, shape, -z, facecolor='tab:orange', alpha=0.5)

    ax.autoscale_view()
    ax.set_xlabel('z [mm]', fontsize=20)
    ax.set_ylabel('r [mm]', fontsize=20)
    ax.legend(loc='upper right')
    plt.tight_layout()

    if output_prefix:
        fig.savefig(f"{output_prefix}_rz.png", dpi=300)
        fig.savefig(f"{output_prefix}_rz.pdf")
    if show:
        plt.show()
    return fig, ax


def radiation_length_histograms(records: RecordCollector):
    """
    Average radiation length of the modules per barrel layer and per endcap
    disc, as (barrel, endcap) histograms over the layer / disc index.
    """
    summaries = records.radiation_lengths
    n_layers = max([s.index for s in summaries if s.barrel], default=0)
    n_discs = max([s.index for s in summaries if not s.barrel], default=0)

    barrel = hist.Hist.new.Reg(max(n_layers, 1), 0.5, max(n_layers, 1) + 0.5, name="layer",
                               label="Barrel layer").Double()
    endcap = hist.Hist.new.Reg(max(n_discs, 1), 0.5, max(n_discs, 1) + 0.5, name="disc",
                               label="Endcap disc").Double()
    for summary in summaries:
        if summary.barrel:
            barrel.fill(layer=summary.index, weight=summary.radiation_length)
        else:
            endcap.fill(disc=summary.index, weight=summary.radiation_length)
    return barrel, endcap


def plot_radiation_lengths(records: RecordCollector, output_prefix=None, show=False):
    barrel, endcap = radiation_length_histograms(records)

    plt.style.use(hep.style.CMS)
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))
    hep.histplot(barrel, ax=ax1, histtype='fill', alpha=0.7, label='Barrel')
    hep.histplot(endcap, ax=ax2, histtype='fill', alpha=0.7, color='tab:orange', label='Endcap')
    for ax in (ax1, ax2):
        ax.set_ylabel(r'Module $x/X_0$', fontsize=20)
        ax.legend()
    plt.tight_layout()

    if output_prefix:
        fig.savefig(f"{output_prefix}_radlength.png", dpi=300)
        fig.savefig(f"{output_prefix}_radlength.pdf")
    if show:
        plt.show()
    return fig
