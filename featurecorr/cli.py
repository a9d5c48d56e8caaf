"""Command line interface.

Usage:
    featurecorr calibrate run1.tsv --partitions 3 --out run1.calibrated.tsv
    featurecorr calibrate run1.tsv run2.tsv --outdir calibrated/
    featurecorr match run1.tsv run2.tsv --deltamass 5ppm --deltaelution 20 \\
        --elutionmode time --out matches.tsv
    featurecorr offsets run1.tsv --maxrelativedaltons 50 --out offsets.tsv
"""

import argparse
import logging
import sys
from pathlib import Path

from .calibration import CalibrationParams, MassCalibrator
from .constants import (
    DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC,
    DEFAULT_MAX_RELATIVE_DALTONS,
    DEFAULT_MAX_RELATIVE_SECONDS,
    DEFAULT_MIN_RELATIVE_DALTONS,
    DEFAULT_MIN_RELATIVE_SECONDS,
    DEFAULT_SCAN_WINDOW_SIZE,
    DEFAULT_SECONDS_INCREMENT,
    DEFAULT_THEORETICAL_MASS_WAVELENGTH,
)
from .convenience import build_tolerance_spec
from .io import read_feature_tsv, write_feature_tsv, write_match_tsv, write_table
from .matching import (
    ElutionMode,
    OffsetBucketScanner,
    OffsetScanParams,
    ToleranceMatcher,
)
from .tolerance import MassToleranceType

logger = logging.getLogger(__name__)


def _delta_mass(text: str):
    """argparse type for '<value>da|ppm' tolerances; a bare number is in Daltons."""
    try:
        return MassToleranceType.parse(text, default=MassToleranceType.ABSOLUTE)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='featurecorr',
        description='Mass calibration and correlation of MS1 feature sets',
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # calibrate
    calibrate = subparsers.add_parser(
        'calibrate', help='Correct feature masses using the peptide mass cluster model')
    calibrate.add_argument('inputs', nargs='+', type=Path, help='Feature file(s)')
    output = calibrate.add_mutually_exclusive_group(required=True)
    output.add_argument('--out', type=Path, help='Output file (single input only)')
    output.add_argument('--outdir', type=Path, help='Output directory')
    calibrate.add_argument('--partitions', type=int, default=1,
                           help='Number of scan partitions, calibrated separately')
    calibrate.add_argument('--maxpairs', type=int,
                           default=DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC,
                           help='Maximum feature pairs used in the regression')
    calibrate.add_argument('--theoreticalwavelength', type=float,
                           default=DEFAULT_THEORETICAL_MASS_WAVELENGTH,
                           help='Theoretical mass cluster spacing (Da)')
    calibrate.add_argument('--initialfilterppm', type=float, default=0.0,
                           help='Exclude features further than this from a cluster '
                                'centre from the fit (0 = off)')

    # match
    match = subparsers.add_parser('match', help='Match features between two files')
    match.add_argument('master', type=Path, help='Master feature file')
    match.add_argument('slave', type=Path, help='Slave feature file')
    match.add_argument('--deltamass', type=_delta_mass, default=None,
                       help='Mass tolerance, e.g. 5ppm or 0.1da; a bare number is Da '
                            '(default 5ppm)')
    match.add_argument('--deltaelution', type=float, default=None,
                       help='Elution tolerance (default depends on --elutionmode)')
    match.add_argument('--elutionmode', choices=[m.value for m in ElutionMode],
                       default=ElutionMode.SCAN.value)
    match.add_argument('--withincharge', action='store_true',
                       help='Only match features of equal charge')
    match.add_argument('--out', type=Path, required=True, help='Output match table')

    # offsets
    offsets = subparsers.add_parser(
        'offsets', help='Histogram features at whole-Dalton offsets from each feature')
    offsets.add_argument('input', type=Path, help='Feature file to interrogate')
    offsets.add_argument('--reference', type=Path,
                         help='Reference feature file (default: the input itself)')
    offsets.add_argument('--masswavelength', type=float,
                         default=DEFAULT_THEORETICAL_MASS_WAVELENGTH)
    offsets.add_argument('--minrelativedaltons', type=int,
                         default=DEFAULT_MIN_RELATIVE_DALTONS)
    offsets.add_argument('--maxrelativedaltons', type=int,
                         default=DEFAULT_MAX_RELATIVE_DALTONS)
    offsets.add_argument('--deltamass', type=_delta_mass, default=(10.0, MassToleranceType.PPM),
                         help='Tolerance around each bucket centre (default 10ppm)')
    offsets.add_argument('--scanwindowsize', type=int, default=DEFAULT_SCAN_WINDOW_SIZE,
                         help='Scan window size, including the identity scan')
    offsets.add_argument('--out', type=Path, help='Histogram table')
    offsets.add_argument('--outzerobucket', type=Path,
                         help='Write features in the offset-0 bucket to this file')
    offsets.add_argument('--heatmapout', type=Path,
                         help='Relative time x relative mass count table')
    offsets.add_argument('--minrelativeseconds', type=int,
                         default=DEFAULT_MIN_RELATIVE_SECONDS)
    offsets.add_argument('--maxrelativeseconds', type=int,
                         default=DEFAULT_MAX_RELATIVE_SECONDS)
    offsets.add_argument('--secondsincrement', type=int, default=DEFAULT_SECONDS_INCREMENT)

    return parser


# =============================================================================
# Commands
# =============================================================================

def run_calibrate(args, parser) -> None:
    if args.out is not None and len(args.inputs) > 1:
        parser.error("--out accepts a single input file; use --outdir for several")
    try:
        params = CalibrationParams(
            theoretical_wavelength=args.theoreticalwavelength,
            max_pairs=args.maxpairs,
            n_partitions=args.partitions,
            initial_filter_ppm=args.initialfilterppm,
        )
    except ValueError as e:
        parser.error(str(e))

    calibrator = MassCalibrator(params)
    for input_path in args.inputs:
        features, frame = read_feature_tsv(input_path, return_frame=True)
        result = calibrator.calibrate(features)
        out_path = args.out if args.out is not None else args.outdir / input_path.name
        write_feature_tsv(result.features, out_path, template=frame)

        stats = calibrator.get_statistics()
        if 'mean_abs_deviation_before' in stats:
            logger.info(
                f"{input_path.name}: mean |mass defect deviation| "
                f"{stats['mean_abs_deviation_before']:.4f} -> "
                f"{stats['mean_abs_deviation_after']:.4f} Da"
            )


def run_match(args, parser) -> None:
    delta_mass, delta_mass_type = (None, MassToleranceType.PPM) if args.deltamass is None \
        else args.deltamass
    try:
        spec = build_tolerance_spec(
            delta_mass=delta_mass,
            delta_mass_type=delta_mass_type,
            delta_elution=args.deltaelution,
            elution_mode=args.elutionmode,
            match_within_charge=args.withincharge,
        )
    except ValueError as e:
        parser.error(str(e))

    master = read_feature_tsv(args.master)
    slave = read_feature_tsv(args.slave)
    result = ToleranceMatcher(spec).match(master, slave)
    write_match_tsv(result, master, slave, args.out)


def run_offsets(args, parser) -> None:
    if args.minrelativedaltons < 0:
        parser.error("--minrelativedaltons must be >= 0")
    if args.minrelativedaltons > args.maxrelativedaltons:
        parser.error("--minrelativedaltons must not exceed --maxrelativedaltons")

    delta_mass, delta_mass_type = args.deltamass
    try:
        params = OffsetScanParams(
            mass_wavelength=args.masswavelength,
            min_relative_daltons=args.minrelativedaltons,
            max_relative_daltons=args.maxrelativedaltons,
            delta_mass=delta_mass,
            delta_mass_type=delta_mass_type,
            scan_window_size=args.scanwindowsize,
            collect_identity=args.outzerobucket is not None,
        )
    except ValueError as e:
        parser.error(str(e))

    import pandas as pd

    interrogated = read_feature_tsv(args.input)
    reference = read_feature_tsv(args.reference) if args.reference else interrogated
    scanner = OffsetBucketScanner(params)
    result = scanner.scan(reference, interrogated)

    for daltons, count in result.top_offsets(5):
        logger.info(f"  +{daltons} Da: {count:,}")

    if args.out is not None:
        write_table(pd.DataFrame({
            'relative_daltons': result.relative_daltons,
            'relative_mass': result.relative_masses,
            'count': result.counts,
        }), args.out)

    if args.outzerobucket is not None:
        write_feature_tsv(interrogated.take(result.identity_indices), args.outzerobucket)

    if args.heatmapout is not None:
        heatmap = scanner.time_heatmap(interrogated, args.minrelativeseconds,
                                       args.maxrelativeseconds, args.secondsincrement)
        frame = pd.DataFrame(heatmap.counts, index=heatmap.relative_seconds,
                             columns=heatmap.relative_daltons)
        frame.index.name = 'relative_seconds'
        write_table(frame, args.heatmapout, index=True)


COMMANDS = {
    'calibrate': run_calibrate,
    'match': run_match,
    'offsets': run_offsets,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    COMMANDS[args.command](args, parser)
    return 0


if __name__ == '__main__':
    sys.exit(main())
