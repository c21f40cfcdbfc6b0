"""Command line tool for admitting kargo resources and discovering Freight."""

import argparse
import asyncio
import logging
import sys
import traceback

from kargo_core.exceptions import KargoException

from . import apply

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for running kargo controllers locally.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    apply.ApplyAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """kargo-core command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except KargoException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("kargo-core error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
