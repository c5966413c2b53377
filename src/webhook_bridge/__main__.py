"""CLI entry point for webhook-bridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from datetime import datetime, timezone

from webhook_bridge.app import WebhookBridgeApp
from webhook_bridge.config import AppConfig, load_config
from webhook_bridge.core.accounts import resolve_account
from webhook_bridge.core.types import CHANNEL_ID, UsagePeriod
from webhook_bridge.log import setup_logging
from webhook_bridge.services.token_tracker import TokenUsageTracker


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="webhook-bridge",
        description="Bidirectional HTTP webhook bridge for a conversational backend",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    _add_config_args(subparsers.add_parser("start", help="Start the webhook listener"))
    _add_config_args(subparsers.add_parser("config-check", help="Validate configuration"))
    _add_config_args(subparsers.add_parser("status", help="Show account status and config issues"))

    tokens_parser = subparsers.add_parser("tokens", help="Show or reset token usage")
    _add_config_args(tokens_parser)
    tokens_parser.add_argument(
        "--reset",
        choices=[p.value for p in UsagePeriod] + ["all"],
        help="Reset one period, or all of them",
    )

    pairing_parser = subparsers.add_parser("pairing", help="Manage pairing requests")
    pairing_sub = pairing_parser.add_subparsers(dest="pairing_command", required=True)
    _add_config_args(pairing_sub.add_parser("list", help="List pending pairing requests"))
    approve_parser = pairing_sub.add_parser("approve", help="Approve a pairing code")
    _add_config_args(approve_parser)
    approve_parser.add_argument("code", help="Pairing code sent to the user")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "status":
        _status(args.config, args.env)
    elif args.command == "tokens":
        asyncio.run(_tokens(_load_or_exit(args.config, args.env), args.reset))
    elif args.command == "pairing":
        config = _load_or_exit(args.config, args.env)
        if args.pairing_command == "list":
            asyncio.run(_pairing_list(config))
        else:
            asyncio.run(_pairing_approve(config, args.code))
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    account = resolve_account(config)
    cfg = account.config
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Inbound: {cfg.inbound.host}:{cfg.inbound.port}{cfg.inbound.path}")
    print(f"  Outbound: {cfg.outbound.url or '(not set)'} (timeout {cfg.outbound.timeout_seconds}s)")
    print(f"  DM policy: {cfg.dm.policy} (allowFrom: {', '.join(cfg.dm.allow_from) or '(none)'})")
    print(f"  Backend: {config.backend.kind} [agent {config.backend.agent_id}]")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Credentials: {account.credential_source}")


def _status(config_path: str, env_path: str) -> None:
    config = _load_or_exit(config_path, env_path)
    app = WebhookBridgeApp(config)
    snapshot = app.snapshot()
    print(json.dumps(snapshot, indent=2))
    if snapshot["issues"]:
        print("\nIssues:")
        for issue in snapshot["issues"]:
            print(f"  - {issue['message']} Fix: {issue['fix']}")
    asyncio.run(app.stop())


async def _tokens(config: AppConfig, reset: str | None) -> None:
    tracker = TokenUsageTracker(config.storage.token_usage_path, autosave_interval_seconds=0)
    await tracker.load()
    if reset:
        await tracker.reset(None if reset == "all" else UsagePeriod(reset))
        print(f"Reset: {reset}")
    print(json.dumps(tracker.wire_snapshot(), indent=2))


def _format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


async def _pairing_list(config: AppConfig) -> None:
    app = WebhookBridgeApp(config)
    await app.db.initialize()
    try:
        pending = await app.pairing_repo.list_pending(CHANNEL_ID)
    finally:
        await app.stop()
    if not pending:
        print("No pending pairing requests.")
        return
    for request in pending:
        name = f" ({request.sender_name})" if request.sender_name else ""
        print(
            f"  {request.code}  {request.sender_id}{name}  "
            f"requested {_format_ms(request.created_at)}, expires {_format_ms(request.expires_at)}"
        )


async def _pairing_approve(config: AppConfig, code: str) -> None:
    app = WebhookBridgeApp(config)
    await app.db.initialize()
    try:
        request = await app.approve_pairing(code)
    finally:
        await app.stop()
    if request is None:
        print(f"No pending pairing request with code {code}", file=sys.stderr)
        sys.exit(1)
    print(f"Approved {request.sender_id}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(_signal_handler))

        app = WebhookBridgeApp(config)
        try:
            await app.start()
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
