#!/usr/bin/env python3
"""
Extract the geometry records of a tracker layout and write them as a DDD-style
XML description, with optional diagnostic plots.

Example:
    python analysis_scripts/extract_tracker_geometry.py data/example_layout.json \
        --materials data/materials.dat --output output/tracker.xml --plots output/tracker
"""

import argparse
import sys
from pathlib import Path

from trackergeo.detector_config import get_extractor_config
from trackergeo.errors import ExtractionError
from trackergeo.geometry_extraction.ddd_writer import write_ddd
from trackergeo.geometry_extraction.extractor import Extractor
from trackergeo.model.layout_builder import load_layout
from trackergeo.model.materials import load_material_table


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('layout', help="JSON layout of the tracker")
    parser.add_argument('--materials', required=True, help="Material table (tag density X0 lambdaI)")
    parser.add_argument('--output', default="tracker.xml", help="Output XML file")
    parser.add_argument('--write-tracker', action='store_true',
                        help="Standalone tracker: alternate namespace, no top-level containers")
    parser.add_argument('--plots', default=None, help="Prefix of the diagnostic plots; no plots if omitted")
    parser.add_argument('--quiet', action='store_true', help="Only print warnings and errors")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = get_extractor_config()

    try:
        table = load_material_table(args.materials)
        tracker, inactive = load_layout(args.layout, table)
    except (OSError, ValueError) as e:
        print(f"Error reading inputs: {e}")
        return 1

    print(f"Layout: {len(tracker.barrel_layers)} barrel layers, {len(tracker.endcap_discs)} endcap discs")
    extractor = Extractor(tracker, table, inactive, config, write_tracker=args.write_tracker,
                          verbose=not args.quiet)
    try:
        records = extractor.analyse()
    except ExtractionError as e:
        print(f"Error processing {args.layout}: {e}")
        return 1

    for name, count in records.counts().items():
        print(f"  {name:18s}: {count}")
    write_ddd(records, args.output, namespace=extractor.namespace)

    if args.plots:
        from trackergeo.geometry_extraction.plotting import plot_radiation_lengths, plot_rz_view

        Path(args.plots).parent.mkdir(parents=True, exist_ok=True)
        plot_rz_view(records, config, namespace=extractor.namespace, output_prefix=args.plots)
        plot_radiation_lengths(records, output_prefix=args.plots)
    return 0


if __name__ == "__main__":
    sys.exit(main())
