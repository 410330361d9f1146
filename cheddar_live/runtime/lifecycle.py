from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from cheddar_live.config.errors import ConfigError
from cheddar_live.config.loader import load_config, resolve_profile_configs
from cheddar_live.llm.prompts import profiles
from cheddar_live.observability.logging import configure_logging
from cheddar_live.runtime.live_loop import run_live_loop


logger = logging.getLogger(__name__)

_SECRET_MARKERS = ("api_key", "token", "secret", "password")


def redact_secrets(obj: Any) -> Any:
    """Mask secret-looking keys in a config dump."""

    if isinstance(obj, dict):
        return {
            k: "<redacted>" if isinstance(k, str) and any(m in k.lower() for m in _SECRET_MARKERS) else redact_secrets(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [redact_secrets(x) for x in obj]
    return obj


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cheddar-live",
        description="Live multimodal assistant session (Gemini Live + system audio capture)",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--config",
        type=Path,
        help="Path to a YAML config file (skips profile resolution)",
    )
    group.add_argument(
        "--config-profile",
        choices=["app", "dev"],
        default="app",
        help="Config profile under ./configs (app loads app.yaml; dev overlays dev.yaml)",
    )

    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Open a live session and relay stdin as text input")
    run_p.add_argument("--profile", choices=profiles(), default=None, help="Assistance profile")
    run_p.add_argument("--prompt", default="", help="Extra context appended to the system instruction")
    run_p.set_defaults(command="run")

    print_p = sub.add_parser("print-config", help="Load and print the expanded config")
    print_p.set_defaults(command="print-config")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint referenced by pyproject.toml."""

    argv_list = list(argv) if argv is not None else sys.argv[1:]

    # Default to `run` when no subcommand is given.
    known = {"run", "print-config"}
    if not any(a in known for a in argv_list) and not any(a in {"-h", "--help"} for a in argv_list):
        argv_list = [*argv_list, "run"]

    parser = _build_parser()

    try:
        ns = parser.parse_args(argv_list)
    except SystemExit as e:
        code = e.code
        return int(code) if isinstance(code, int) else 1

    configure_logging(level=ns.log_level)

    try:
        if ns.config is not None:
            config_paths = [ns.config]
        else:
            config_paths = resolve_profile_configs(profile=ns.config_profile, configs_dir=Path.cwd() / "configs")

        cfg = load_config(config_paths)
        logger.info("config_loaded", extra={"config_files": [str(p) for p in config_paths]})

        if ns.command == "print-config":
            sys.stdout.write(json.dumps(redact_secrets(cfg), ensure_ascii=False, indent=2))
            sys.stdout.write("\n")
            return 0

        asyncio.run(run_live_loop(cfg, prompt=ns.prompt, profile=ns.profile))
        return 0

    except ConfigError as e:
        logger.error("config_error", extra={"error": str(e)})
        sys.stderr.write(f"ConfigError: {e}\n")
        return 2
    except KeyboardInterrupt:
        return 130
    except Exception as e:  # noqa: BLE001
        logger.exception("fatal_error")
        sys.stderr.write(f"Fatal error: {e}\n")
        return 1
