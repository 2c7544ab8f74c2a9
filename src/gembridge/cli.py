import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from gembridge.config import load_env_file, load_settings
from gembridge.services.toolchain import ToolchainGateway


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_packages(raw: str):
    """``sass`` or ``sass=3.4.0,compass`` into the gateway's package forms."""
    if "=" not in raw and "," not in raw:
        return raw
    packages = {}
    for chunk in raw.split(","):
        name, _, constraint = chunk.partition("=")
        if name.strip():
            packages[name.strip()] = constraint.strip()
    return packages


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ruby/RubyGems toolchain bridge")
    parser.add_argument("--env-file", default="", help="Optional .env file with GEMBRIDGE_* settings")
    parser.add_argument("--status", action="store_true", help="Print toolchain status as JSON")
    parser.add_argument("--require", metavar="GEM", help="Ensure a gem is installed")
    parser.add_argument("--gem-version", dest="gem_version", default="", help="Version constraint for --require")
    parser.add_argument("--force-refresh", action="store_true", help="Reinstall even when already listed")
    parser.add_argument(
        "--exec",
        nargs=2,
        metavar=("GEMS", "COMMAND"),
        help="Run COMMAND from GEMS ('sass' or 'sass=3.4.0,compass'); extra args follow '--'",
    )
    parser.add_argument(
        "--control-center",
        action="store_true",
        help="Serve the HTTP integration API",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Control Center bind host")
    parser.add_argument("--port", type=int, default=8766, help="Control Center bind port")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments forwarded to --exec")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    env_file = load_env_file(Path(args.env_file).expanduser()) if args.env_file else {}
    gateway = ToolchainGateway(settings=load_settings(env_file=env_file))

    if args.control_center:
        from gembridge.control_center.app import create_app
        import uvicorn

        uvicorn.run(create_app(gateway), host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    if args.require:
        error = gateway.ensure_package_installed(args.require, args.gem_version or None, args.force_refresh)
        if error:
            print(error, file=sys.stderr)
            return 1
        print(f"Gem available: {args.require}")
        return 0

    if args.exec:
        gems, command = args.exec
        forwarded = list(args.args)
        if forwarded[:1] == ["--"]:
            forwarded = forwarded[1:]
        code = gateway.invoke_package_command(
            _parse_packages(gems),
            command,
            forwarded,
            out=getattr(sys.stdout, "buffer", None),
            err=getattr(sys.stderr, "buffer", None),
        )
        return 1 if code < 0 else code

    print(json.dumps(gateway.status(), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
