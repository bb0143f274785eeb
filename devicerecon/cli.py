from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .normalization import NormalizationError
from .pipeline import run_reconciliation
from .progress import ConsoleProgressReporter, LoggingProgressReporter

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="On-premises directory vs cloud directory vs MDM device reconciliation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Execute the reconciliation workflow")
    run_parser.add_argument(
        "--ad-file",
        type=Path,
        default=Path("data/ad_computers.csv"),
        help="Export of the on-premises directory computer objects.",
    )
    run_parser.add_argument(
        "--aad-file",
        type=Path,
        default=Path("data/aad_devices.csv"),
        help="Export of the cloud directory devices.",
    )
    run_parser.add_argument(
        "--mdm-file",
        type=Path,
        default=Path("data/mdm_devices.json"),
        help="Export of the MDM managed devices.",
    )
    run_parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("out"),
        help="Directory that will receive the reconciliation artefacts.",
    )
    run_parser.add_argument(
        "--prefix",
        default="DeviceReport",
        help="File name prefix of the generated reports.",
    )
    run_parser.add_argument(
        "--progress",
        choices=("none", "log", "console"),
        default="log",
        help="How progress is reported while devices are reconciled.",
    )
    run_parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Seconds to pause after each device when --progress=console.",
    )
    run_parser.add_argument(
        "--no-llm",
        action="store_true",
        help="Use rule-based remediation guidance only.",
    )
    run_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any on-premises record was skipped as defective.",
    )
    run_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging verbosity.",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        if args.progress == "console":
            progress = ConsoleProgressReporter(delay=args.delay)
        elif args.progress == "log":
            progress = LoggingProgressReporter()
        else:
            progress = None

        try:
            artifacts = run_reconciliation(
                ad_path=args.ad_file,
                aad_path=args.aad_file,
                mdm_path=args.mdm_file,
                out_dir=args.out_dir,
                prefix=args.prefix,
                progress=progress,
                use_llm=not args.no_llm,
            )
        except FileNotFoundError as exc:
            LOGGER.error("Input file not found: %s", exc)
            return 2
        except NormalizationError as exc:
            LOGGER.error("Could not read inventory export: %s", exc)
            return 2

        if args.strict and artifacts.result.defects:
            return 1
        return 0

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via CLI entry point
    raise SystemExit(main())
