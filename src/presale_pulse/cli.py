"""CLI entrypoint for the pulse feed."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import config_signature, load_config
from .errors import PulseError
from .logging_utils import configure_logging
from .runner import PulseRunner
from .schedule.generator import build_rng, generate_schedule
from .service import create_app

logger = logging.getLogger(__name__)


def _run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    runner = PulseRunner(cfg)
    runner.prepare()
    runner.start()
    app = create_app(runner.status)
    port = args.port or cfg.public_port
    logger.info("Pulse status server listening host=%s port=%d", args.host, port)
    app.run(host=args.host, port=port, debug=False, use_reloader=False)
    return 0


def _plan(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    seed = args.seed if args.seed is not None else cfg.seed
    generated = generate_schedule(cfg, build_rng(seed))
    summary = generated.summary()
    summary["config_signature"] = config_signature(cfg)
    summary["total_messages"] = generated.total_messages
    print(json.dumps(summary, sort_keys=True))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Presale purchase-activity feed")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Also write delivery records and warnings here")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Deliver the schedule and serve /status")
    run_parser.add_argument("--config", type=Path, default=Path("config.json"), help="Base config (YAML or JSON)")
    run_parser.add_argument("--host", default="0.0.0.0")
    run_parser.add_argument("--port", type=int, default=None, help="Overrides public_port")
    run_parser.set_defaults(handler=_run)

    plan_parser = sub.add_parser("plan", help="Print a schedule summary without sending")
    plan_parser.add_argument("--config", type=Path, default=Path("config.json"), help="Base config (YAML or JSON)")
    plan_parser.add_argument("--seed", type=int, default=None, help="Overrides the configured seed")
    plan_parser.set_defaults(handler=_plan)

    args = parser.parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level), log_path=args.log_file)
    try:
        return args.handler(args)
    except PulseError as exc:
        logger.error("Pulse startup failed code=%s detail=%s", exc.code, exc.detail)
        return 1


if __name__ == "__main__":
    sys.exit(main())
