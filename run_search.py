from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace

from evolution.logging_config import setup_logging
from evolution.search_parser import ValidationError, load_search_from_file
from evolution.search_runner import SearchRunner
from geomutils.errors import GeometryError

logger = logging.getLogger("geomevolve")


def run_search(
    config_path: str,
    seed: int | None = None,
    workers: int | None = None,
) -> SearchRunner:
    """Load a search definition, apply command line overrides and run every stage."""
    definition = load_search_from_file(config_path)
    if seed is not None or workers is not None:
        search = replace(
            definition.search,
            seed=definition.search.seed if seed is None else seed,
            workers=definition.search.workers if workers is None else workers,
        )
        definition = replace(definition, search=search)
    runner = SearchRunner(definition)
    runner.run()
    return runner


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Genetic-algorithm search for low-energy cluster geometries."
    )
    parser.add_argument("config", help="Path to the YAML search definition.")
    parser.add_argument("--seed", type=int, default=None, help="Override search.seed.")
    parser.add_argument(
        "--workers", type=int, default=None, help="Override search.workers."
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default INFO).",
    )
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    args = parser.parse_args(argv)

    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    setup_logging(getattr(logging, args.log_level), args.log_file)
    try:
        run_search(args.config, seed=args.seed, workers=args.workers)
    except (ValidationError, GeometryError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
