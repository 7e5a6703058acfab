from . import display, progress as prog
from .config import RenderConfig, DAY
from .document import TextDocument
from .service import RenderService, LIGHT, DARK

import platformdirs

import argparse
import os
import os.path
import sys


VERSION = '0.1.0'

NAME = 'mathpeek'  # For errors/warnings


def get_cache_root() -> str:
    return platformdirs.user_cache_dir(appname = 'mathpeek', version = VERSION)


def non_negative_float(s: str) -> float:
    try:
        value = float(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f'"{s}" is not a number')
    if value < 0:
        raise argparse.ArgumentTypeError('Must be non-negative')
    return value


def make_parser(cache_root: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'mathpeek',
        description = ('Render the LaTeX math found in a plain-text (e.g., org-mode) document to '
                       'SVG/PNG images, using an external LaTeX installation, and caching the '
                       'results.'),
        formatter_class = argparse.RawDescriptionHelpFormatter)

    parser.add_argument(
        '-v', '--version', action = 'version',
        version = f'mathpeek {VERSION}\n(cache: {cache_root})')

    parser.add_argument(
        'input', metavar = 'INPUT', type = str, nargs = '?',
        help = 'Input document containing LaTeX math.')

    where = parser.add_mutually_exclusive_group()
    where.add_argument(
        '--offset', metavar = 'N', type = int,
        help = 'Render the equation at this (0-based) character offset, printing Markdown.')

    where.add_argument(
        '--at', metavar = 'LINE:COL', type = str,
        help = 'Render the equation at this (1-based) line and column, printing Markdown.')

    where.add_argument(
        '-a', '--all', action = 'store_true',
        help = 'Render every equation in the document.')

    parser.add_argument(
        '-o', '--output', metavar = 'OUTPUT.html', type = str,
        help = ('With -a/--all, write an HTML preview page here. (By default, this is based on '
                'the input filename.)'))

    parser.add_argument(
        '-d', '--dark', action = 'store_true',
        help = 'Render light-on-dark images.')

    parser.add_argument(
        '--cache-dir', metavar = 'DIR', type = str,
        help = f'Cache root directory. (By default, "{cache_root}".)')

    parser.add_argument(
        '--clean', action = 'store_true',
        help = 'Clear the image cache before doing anything else.')

    parser.add_argument(
        '--max-age', metavar = 'DAYS', type = non_negative_float,
        help = 'Delete cached images older than this many days (7 by default).')

    parser.add_argument(
        '--timeout', metavar = 'SECS', type = non_negative_float,
        help = 'Time allowed for each external command (10 secs by default).')

    parser.add_argument(
        '--stats', action = 'store_true',
        help = 'Report the number and total size of cached images.')

    parser.add_argument(
        '--check', action = 'store_true',
        help = 'Check whether the LaTeX tools are installed.')

    parser.add_argument(
        '--verbose', action = 'store_true',
        help = 'Also report cache hits.')

    return parser


def parse_position(document: TextDocument, at: str) -> int:
    line_str, _, col_str = at.partition(':')
    try:
        line = int(line_str)
        col = int(col_str or '1')
    except ValueError:
        raise argparse.ArgumentTypeError(f'"{at}" is not of the form LINE:COL')
    return document.offset_at(line - 1, col - 1)


def main(argv = None, tool = None):
    cache_root = get_cache_root()
    parser = make_parser(cache_root)
    args = parser.parse_args(argv)

    progress = prog.Progress(show_cache_hits = args.verbose)
    config = RenderConfig()
    if args.max_age is not None:
        config.max_age = args.max_age * DAY
    if args.timeout is not None:
        config.timeout = args.timeout

    variant = DARK if args.dark else LIGHT
    cache_root = os.path.abspath(args.cache_dir) if args.cache_dir else cache_root

    document = None
    if args.input is not None:
        try:
            with open(args.input, encoding = 'utf-8') as reader:
                document = TextDocument(os.path.abspath(args.input), reader.read())
        except OSError as e:
            progress.error(NAME, msg = f'cannot read "{args.input}"', exception = e,
                           show_traceback = False)
            return 1

    elif args.offset is not None or args.at or args.all:
        parser.error('an INPUT document is required to render equations')

    try:
        service = RenderService(cache_root, tool = tool, config = config, progress = progress)
    except OSError as e:
        progress.error(NAME, msg = 'cannot create/open cache directory', exception = e,
                       show_traceback = False)
        return 1

    status = 0
    with service:
        if args.clean:
            service.clear_cache()

        if args.check:
            availability = service.check_toolchain_availability()
            print(availability.message)
            if not availability.available:
                status = 1

        if document is not None:
            if args.all:
                status = max(status, render_all(service, document, variant, args.output))
            else:
                if args.offset is not None:
                    offset = args.offset
                elif args.at:
                    try:
                        offset = parse_position(document, args.at)
                    except argparse.ArgumentTypeError as e:
                        parser.error(str(e))
                else:
                    offset = 0
                outcome = service.render_fragment_at(document, offset, variant)
                print(display.as_markdown(outcome, config.svg_max_width))
                if not outcome.ok:
                    status = max(status, 1)

        if args.stats:
            stats = service.cache_stats()
            print(f'{stats.entry_count} cached image(s), {stats.total_bytes} bytes, '
                  f'in {service.cache.cache_dir}')

    return status


def render_all(service: RenderService, document: TextDocument, variant: str, output) -> int:
    fragments = service.fragments(document)
    futures = [service.submit_render(document, fragment.start_offset, variant)
               for fragment in fragments]
    outcomes = [future.result() for future in futures]

    target_file = output or (os.path.splitext(document.uri)[0] + '.html')
    if os.path.isdir(target_file):
        base = os.path.splitext(os.path.basename(document.uri))[0]
        target_file = os.path.join(target_file, base + '.html')

    try:
        with open(target_file, 'w', encoding = 'utf-8') as writer:
            writer.write(display.html_report(os.path.basename(document.uri),
                                             outcomes,
                                             service.config.svg_max_width))
    except OSError as e:
        service.progress.error(NAME, msg = f'cannot write output "{target_file}"', exception = e,
                               show_traceback = False)
        return 1

    failures = sum(1 for outcome in outcomes if not outcome.ok)
    service.progress.progress(
        NAME, msg = f'Wrote {len(outcomes)} equation(s) to {target_file} ({failures} failed)')
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
