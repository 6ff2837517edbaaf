"""Command line entry point: upload files and print their OIDs.

Usage:
    pglo-upload --dsn DSN [--chunk-size N] [--pool N] FILE [FILE ...]

The DSN may also be given as PGLO_DSN in the environment.  Files are
uploaded one after the other; each line of output is one OID.
"""

import argparse
import logging
import os
import sys

from .config import validate_dsn
from .connection import ConnectionAcquirer
from .connection import PooledConnectionAcquirer
from .uploader import Uploader
from .writer import DEFAULT_CHUNK_SIZE


def _positive_int(value):
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pglo-upload",
        description="Upload files into PostgreSQL large objects.",
    )
    parser.add_argument(
        "--dsn",
        default=os.environ.get("PGLO_DSN"),
        help="libpq connection string (default: $PGLO_DSN)",
    )
    parser.add_argument(
        "--chunk-size", type=_positive_int, default=DEFAULT_CHUNK_SIZE,
        help=f"bytes per lowrite call (default: {DEFAULT_CHUNK_SIZE})",
    )
    parser.add_argument(
        "--pool", type=int, default=0, metavar="N",
        help="keep a pool of N connections instead of one per file",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("files", nargs="+", metavar="FILE")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        validate_dsn(args.dsn)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.pool > 0:
        acquirer = PooledConnectionAcquirer(
            args.dsn, min_size=args.pool, max_size=args.pool
        )
    else:
        acquirer = ConnectionAcquirer(args.dsn)

    uploader = Uploader(acquirer, chunk_size=args.chunk_size)
    failed = 0
    try:
        for path in args.files:
            result = uploader.save_large_object(path)
            if result.ok:
                print(result.oid)
            else:
                failed += 1
                print(f"{path}: {result.kind}: {result.message}", file=sys.stderr)
    finally:
        uploader.close()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
