"""LivBridge CLI entry point.

Usage:
    livbridge run --config bridge.yaml
    livbridge tools
    livbridge init [--output bridge.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def cmd_run(args: argparse.Namespace) -> None:
    """Run the LivBridge webhook server."""
    config_path = args.config

    if not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    from livbridge.config import load_config

    config = load_config(config_path)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info(f"LivBridge starting with config: {config_path}")
    logger.info(f"LLM: {config.llm.provider}, TTS: {config.tts.provider if config.tts.enabled else 'off'}")
    logger.info(f"Listening on: {host}:{port}")
    if not config.server.public_base_url:
        logger.warning("server.public_base_url is not set; <Play> audio is disabled")

    from livbridge.server import run_server

    run_server(config, host=host, port=port)


def cmd_tools(args: argparse.Namespace) -> None:
    """List the built-in tools and their required arguments."""
    from livbridge.config import BridgeConfig
    from livbridge.tools.builtin import build_default_registry
    from livbridge.tools.outbound import SmsSender, WebhookForwarder

    registry = build_default_registry(BridgeConfig(), SmsSender(), WebhookForwarder())

    print("\nAvailable LivBridge Tools:")
    print("=" * 40)
    for name in registry.names:
        spec = registry.get(name)
        required = ", ".join(spec.required_fields) or "-"
        print(f"  {name:<20} required={required}")
        print(f"  {'':<20} {spec.description}")
    print(f"\nTotal: {len(registry)} tools")
    print()


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from livbridge.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: livbridge run --config {output}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="livbridge",
        description="LivBridge - Twilio voice/SMS bridge for a tool-using assistant",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `livbridge run`
    run_parser = subparsers.add_parser("run", help="Run the webhook server")
    run_parser.add_argument(
        "--config", "-c",
        default="bridge.yaml",
        help="Path to the bridge YAML config file (default: bridge.yaml)",
    )
    run_parser.add_argument("--host", default=None, help="Override the listen host")
    run_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    # `livbridge tools`
    subparsers.add_parser("tools", help="List the built-in tools")

    # `livbridge init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="bridge.yaml",
        help="Output file path (default: bridge.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args()

    if args.command == "run":
        cmd_run(args)
    elif args.command == "tools":
        cmd_tools(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
