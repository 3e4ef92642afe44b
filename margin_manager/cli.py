"""Replay a JSON batch of signals through a fresh margin management system."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

import orjson

from .config import get_settings
from .logger import configure_logging, get_logger
from .models import MarginConfiguration, ResilienceMode
from .serialization import dumps_payload
from .system import MarginManagementSystem

logger = get_logger(__name__)


def _read_json(path: str) -> Any:
    if path == "-":
        return orjson.loads(sys.stdin.buffer.read())
    return orjson.loads(Path(path).read_bytes())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="margin-replay",
        description="Process a batch of resilience signals and print the resulting margin state.",
    )
    parser.add_argument("signals", help="JSON file holding a list of signals ('-' for stdin).")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ResilienceMode],
        default=ResilienceMode.NORMAL.value,
        help="Resilience mode the batch is processed under.",
    )
    parser.add_argument(
        "--horizon", type=int, default=7, help="Forecast horizon in days."
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Optional MarginConfiguration JSON object."
    )
    parser.add_argument("--output", type=Path, help="Optional output file path.")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, stream=sys.stderr)

    if args.horizon <= 0:
        parser.error("--horizon must be a positive number of days")

    signals = _read_json(args.signals)
    if not isinstance(signals, list):
        logger.error("signal batch must be a JSON list", source=args.signals)
        return 1

    config: Optional[MarginConfiguration] = None
    if args.config is not None:
        config = MarginConfiguration.model_validate(orjson.loads(args.config.read_bytes()))

    system = MarginManagementSystem(config, settings=settings)
    result = system.process_signals(signals, ResilienceMode(args.mode))
    payload = {
        "mode": args.mode,
        "result": result.to_payload(),
        "status": system.get_status().to_payload(),
        "metrics": system.get_metrics().to_payload(),
        "forecast": system.generate_forecast(args.horizon).to_payload(),
    }
    rendered = dumps_payload(payload, indent=True)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(rendered + b"\n")
        logger.info("margin replay written", output=str(args.output))
    else:
        sys.stdout.write(rendered.decode("utf-8") + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
