#!/usr/bin/env python3
"""Janet CLI — run and inspect the WhatsApp assistant.

Usage:
    janet serve       Start the webhook receiver
    janet converter   Start the audio converter service
    janet mcp         Run the MCP server over stdio
    janet status      Check a running receiver
    janet config      Show the effective configuration (secrets redacted)
"""

import argparse
import json
import logging
import os
import sys
from urllib.request import urlopen

from janet.config import load_config
from janet.errors import ConfigurationError

# ── ANSI Colors ────────────────────────────────────────────────────────


class C:
    BOLD = "\033[1m"
    DIM = "\033[2m"
    GREEN = "\033[32m"
    RED = "\033[31m"
    CYAN = "\033[36m"
    RESET = "\033[0m"

    @staticmethod
    def strip():
        """Disable colors if not a TTY."""
        if not sys.stdout.isatty():
            for attr in ["BOLD", "DIM", "GREEN", "RED", "CYAN", "RESET"]:
                setattr(C, attr, "")


C.strip()

# ── Helpers ────────────────────────────────────────────────────────────


def setup_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def check_health(port: int = 3000) -> dict | None:
    try:
        resp = urlopen(f"http://localhost:{port}/health", timeout=2)
        return json.loads(resp.read())
    except Exception:
        return None


# ── Commands ───────────────────────────────────────────────────────────


def cmd_serve(args):
    """Start the webhook receiver."""
    import uvicorn

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"{C.RED}Configuration error:{C.RESET} {e}", file=sys.stderr)
        sys.exit(1)
    if args.config:
        os.environ["JANET_CONFIG"] = args.config

    port = args.port or config.port
    print(f"{C.BOLD}{C.CYAN}⦿ Janet{C.RESET}", file=sys.stderr)
    print(f"  Provider:  {config.whatsapp_provider}", file=sys.stderr)
    print(f"  Model:     {config.claude_model}", file=sys.stderr)
    print(f"  Webhook:   http://{config.host}:{port}/api/webhooks/whatsapp", file=sys.stderr)
    print(file=sys.stderr)

    uvicorn.run(
        "janet.receiver:app_factory",
        factory=True,
        host=config.host,
        port=port,
        log_level=args.log_level.lower(),
    )


def cmd_converter(args):
    """Start the audio converter service."""
    import uvicorn

    from janet.converter_service import create_converter_app

    print(f"{C.BOLD}{C.CYAN}⦿ Janet Audio Converter{C.RESET} on port {args.port}", file=sys.stderr)
    uvicorn.run(create_converter_app(), host=args.host, port=args.port, log_level=args.log_level.lower())


def cmd_mcp(args):
    """Run the MCP server over stdio."""
    from janet.mcp_server import run

    run()


def cmd_status(args):
    """Check a running receiver."""
    health = check_health(args.port)
    if not health:
        print(f"  {C.RED}●{C.RESET} Receiver  {C.RED}not running{C.RESET} on port {args.port}")
        sys.exit(1)
    print(f"  {C.GREEN}●{C.RESET} Receiver  {C.GREEN}running{C.RESET} on port {args.port}")
    pipeline = health.get("pipeline", {})
    sessions = pipeline.get("sessions", {})
    print(f"  {C.DIM}  Provider:   {health.get('provider')}{C.RESET}")
    print(f"  {C.DIM}  Processed:  {pipeline.get('processed', 0)} (failed {pipeline.get('failed', 0)}){C.RESET}")
    print(f"  {C.DIM}  Sessions:   {sessions.get('active', 0)} active{C.RESET}")


def cmd_config(args):
    """Show the effective configuration."""
    try:
        config = load_config(args.config, validate=args.check)
    except ConfigurationError as e:
        print(f"{C.RED}✗{C.RESET} {e}")
        sys.exit(1)
    if args.check:
        print(f"{C.GREEN}✓{C.RESET} Configuration is complete")
    print(json.dumps(config.redacted(), indent=2, default=str))


# ── Main ───────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="janet",
        description="Janet — task assistant for WhatsApp",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    sub = parser.add_subparsers(dest="command")

    # serve
    p_serve = sub.add_parser("serve", help="Start the webhook receiver")
    p_serve.add_argument("--config", default=None, help="Path to a JSON config file")
    p_serve.add_argument("--port", type=int, default=None)

    # converter
    p_conv = sub.add_parser("converter", help="Start the audio converter service")
    p_conv.add_argument("--host", default="0.0.0.0")
    p_conv.add_argument("--port", type=int, default=int(os.environ.get("CONVERTER_PORT", 3001)))

    # mcp
    sub.add_parser("mcp", help="Run the MCP server over stdio")

    # status
    p_status = sub.add_parser("status", help="Check a running receiver")
    p_status.add_argument("--port", type=int, default=3000)

    # config
    p_cfg = sub.add_parser("config", help="Show the effective configuration")
    p_cfg.add_argument("--config", default=None, help="Path to a JSON config file")
    p_cfg.add_argument("--check", action="store_true", help="Fail if required settings are missing")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # stdout belongs to the MCP protocol
    if args.command != "mcp":
        setup_logging(args.log_level)

    cmds = {
        "serve": cmd_serve,
        "converter": cmd_converter,
        "mcp": cmd_mcp,
        "status": cmd_status,
        "config": cmd_config,
    }
    cmds[args.command](args)


if __name__ == "__main__":
    main()
