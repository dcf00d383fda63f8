"Rewrite a program's source text: python -m straightline [file]"
from straightline.exceptions import TransformError
from straightline.program import transform_source
from straightline.rewrite import Options
import argparse
import logging
import sys
import typing as t

logger = logging.getLogger(__name__)

def main(argv: t.Optional[t.List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog='straightline',
        description="Rewrite continuation-slot functions and calls into straight-line code.")
    parser.add_argument('input', nargs='?', default='-',
                        help="source file to rewrite; '-' or nothing reads stdin")
    parser.add_argument('-o', '--output', default='-',
                        help="where to write the rewritten source; '-' or nothing writes stdout")
    parser.add_argument('-s', '--sentinel', default=Options.sentinel,
                        help="identifier marking a continuation slot (default: %(default)s)")
    parser.add_argument('--runtime', default=Options.runtime,
                        help="name rewritten code binds the runtime to (default: %(default)s)")
    parser.add_argument('-v', '--verbose', action='store_true', help="log each rewrite step")
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    try:
        options = Options(sentinel=args.sentinel, runtime=args.runtime)
    except ValueError as e:
        parser.error(str(e))

    if args.input == '-':
        filename = '<stdin>'
        source = sys.stdin.read()
    else:
        filename = args.input
        with open(filename) as f:
            source = f.read()
    try:
        output = transform_source(source, filename, options)
    except TransformError as e:
        print(f"{filename}:{e.lineno or 0}: {e.message}", file=sys.stderr)
        return 1
    except SyntaxError as e:
        print(f"{filename}:{e.lineno or 0}: {e.msg}", file=sys.stderr)
        return 1
    if args.output == '-':
        sys.stdout.write(output)
    else:
        with open(args.output, 'w') as f:
            f.write(output)
    logger.debug("wrote %s", args.output)
    return 0

if __name__ == "__main__":
    sys.exit(main())
