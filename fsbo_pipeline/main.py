from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from fsbo_pipeline.config import SUPPORTED_PLATFORMS, load_settings
from fsbo_pipeline.pipeline import REMOTE_PLATFORM, PipelineService, format_error

LOGGER = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Normalize, deduplicate and FSBO-score real-estate listings"
    )
    parser.add_argument("--platform", required=True, choices=SUPPORTED_PLATFORMS)
    parser.add_argument("--input", help="Collector JSON output file ('-' for stdin)")
    parser.add_argument(
        "--mode",
        choices=("new", "full"),
        default="full",
        help="'new' keeps only listings not seen in previous runs",
    )
    parser.add_argument("--remote", action="store_true", help="Run the Lobstr job instead of reading --input")
    parser.add_argument("--search-url", help="Search URL for the remote job task")
    parser.add_argument("--max-results", type=_positive_int, help="Stop fetching remote results after this many")
    parser.add_argument(
        "--clean-cache",
        type=int,
        metavar="DAYS",
        help="Drop discovery cache entries not seen for DAYS days and exit",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _read_payload(path: str) -> Any:
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _print_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    log_level = logging.DEBUG if args.debug else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )

    service = PipelineService(settings)
    only_new = args.mode == "new"

    try:
        if args.clean_cache is not None:
            removed = service.clean_cache(args.platform, args.clean_cache)
            _print_json({"success": True, "platform": args.platform, "removed": removed})
            return 0

        if args.remote:
            if args.platform != REMOTE_PLATFORM:
                raise ValueError(f"--remote is only available for platform '{REMOTE_PLATFORM}'")
            response = asyncio.run(
                service.run_remote(
                    search_url=args.search_url,
                    max_results=args.max_results,
                    only_new=only_new,
                )
            )
        else:
            if not args.input:
                raise ValueError("--input is required unless --remote or --clean-cache is given")
            response = service.process(args.platform, _read_payload(args.input), only_new=only_new)
    except Exception as exc:
        LOGGER.exception("Run failed for platform %s", args.platform)
        _print_json(format_error(args.platform, exc))
        return 1

    _print_json(response)
    LOGGER.info(
        "Done: platform=%s results=%s duplicates_removed=%s",
        args.platform,
        response["count"],
        response["meta"]["duplicates_removed"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
