import argparse
import sys

from . import __version__
from .config import PipelineConfig
from .errors import ArchiveWriteError, EnvironmentCheckError, ValidationError
from .processor import Pipeline
from .tools import check_environment


def build_parser():
    parser = argparse.ArgumentParser(
        prog='dex98',
        description='Extract canonical 30x32 bitmaps from LCD photos and build sprite sheets.')
    parser.add_argument('photos', nargs='*', help='Photos named {index}-{Name}-{frame}.png')
    parser.add_argument('--table', required=True, help='Reference table (TSV)')
    parser.add_argument('--output', default='.', help='Output root directory')
    parser.add_argument('--background', help='Capture of the blank display')
    parser.add_argument('--qc-fixtures', help='Directory of {index}-{frame}.png reference captures')
    parser.add_argument('--kernel-radius', type=int, help='Dilation radius override')
    parser.add_argument('--logo', help='Logo image for the master gallery footer')
    parser.add_argument('--master', action='store_true', help='Rebuild the master gallery')
    parser.add_argument('--self-diff', action='store_true',
                        help='Write diff images for every photo')
    parser.add_argument('--no-oxipng', action='store_true', help='Skip oxipng passes')
    parser.add_argument('--no-background-compression', action='store_true',
                        help='Do not recompress animations in the background')
    parser.add_argument('-q', '--quiet', action='store_true')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.kernel_radius is not None and args.kernel_radius < 1:
        parser.error("--kernel-radius must be at least 1")
    if not args.photos and not args.master:
        print('Missing filename. Provide at least one image to process.', file=sys.stderr)
        return 2

    config = PipelineConfig(
        reference_table=args.table,
        output_dir=args.output,
        background_reference=args.background,
        qc_fixtures_dir=args.qc_fixtures,
        kernel_radius=args.kernel_radius,
        use_oxipng=not args.no_oxipng,
        background_compression=not args.no_background_compression,
        self_diff=args.self_diff,
        verbose=not args.quiet,
        logo_path=args.logo,
    )

    try:
        check_environment(config)
        pipeline = Pipeline(config)
    except EnvironmentCheckError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print('')
    print('Processing images...')
    try:
        summary = pipeline.run(args.photos, master=args.master)
    except (ValidationError, ArchiveWriteError) as e:
        print(f"Error: {e}", file=sys.stderr)
        pipeline.close(cancel_pending=True)
        return 1
    pipeline.close()

    print(f"{len(summary.photos)} image(s), {len(summary.composed)} composite(s), "
          f"{len(summary.mismatches)} QC mismatch(es)")
    print('...Finished :)')
    print('')
    return 0


if __name__ == "__main__":
    sys.exit(main())
