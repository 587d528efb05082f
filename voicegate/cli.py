"""voicegate CLI entry point.

Usage:
    voicegate run --config voicegate.yaml
    voicegate init [--output voicegate.yaml]
    voicegate call --agent support --to +15550100 [--config voicegate.yaml]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def _load(config_path: str | None):
    from voicegate.config import load_config

    if config_path and not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)
    return load_config(config_path)


def cmd_run(args: argparse.Namespace) -> None:
    """Run the gateway server."""
    config = _load(args.config)

    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    logger.info(f"voicegate starting with config: {args.config or '(defaults)'}")
    logger.info(f"Listening on: {args.host or config.server.host}:{args.port or config.server.port}")
    logger.info(f"Agents: {', '.join(a.id for a in config.agents) or 'none'}")

    from voicegate.server import run_server

    run_server(config, host=args.host, port=args.port)


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from voicegate.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: voicegate run --config {output}")


def cmd_call(args: argparse.Namespace) -> None:
    """Place an outbound call through the configured telephony provider."""
    from voicegate.config import Credentials
    from voicegate.context import GatewayContext

    cfg = _load(args.config).with_credentials(Credentials())
    if not cfg.public_url:
        logger.error("server.public_url (or SERVER_URL) must be set to place calls")
        sys.exit(1)
    context = GatewayContext.from_config(cfg)

    async def place() -> str:
        try:
            agent = await context.agents.require(args.agent)
            return await context.telephony.initiate_call(
                to=args.to,
                stream_url=context.resume_url(agent.id),
                status_callback_url=f"{cfg.public_url}/twilio/status",
                agent=agent,
                parameters={"agentId": agent.id},
            )
        finally:
            await context.shutdown()

    try:
        call_sid = asyncio.run(place())
    except Exception as e:
        logger.error(f"Call failed: {e}")
        sys.exit(1)
    print(f"Call placed: {call_sid}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="voicegate",
        description="voicegate - real-time voice call gateway",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `voicegate run`
    run_parser = subparsers.add_parser("run", help="Run the gateway server")
    run_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to the gateway YAML config file (defaults apply if omitted)",
    )
    run_parser.add_argument("--host", default=None, help="Override the listen host")
    run_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    # `voicegate init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="voicegate.yaml",
        help="Output file path (default: voicegate.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    # `voicegate call`
    call_parser = subparsers.add_parser("call", help="Place an outbound call")
    call_parser.add_argument("--agent", "-a", required=True, help="Agent id to answer the call")
    call_parser.add_argument("--to", "-t", required=True, help="Destination phone number")
    call_parser.add_argument("--config", "-c", default=None, help="Path to the gateway YAML config file")

    args = parser.parse_args()

    if args.command == "run":
        cmd_run(args)
    elif args.command == "init":
        cmd_init(args)
    elif args.command == "call":
        cmd_call(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
