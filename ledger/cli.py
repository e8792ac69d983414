"""
LOR Ledger — Command Line

Usage:
    # Connect, register, request, approve and look up one student
    # against an in-process chain
    python -m ledger.cli demo --name Alice --course Math --email alice@email.com

    # Show the resolved configuration
    python -m ledger.cli config

    # Serve the HTTP API (requires fastapi + uvicorn)
    python -m ledger.cli serve --port 8080
"""

import argparse
import asyncio
import json
import sys

from connector.config import load_config, load_settings
from connector.errors import LorError
from connector.logging import configure_logging
from connector.orchestrator import Phase
from ledger.runtime import create_runtime


def _print(line: str = ""):
    print(line, file=sys.stderr, flush=True)


async def _run_demo(args, settings) -> int:
    runtime = create_runtime(settings)
    orch = runtime.orchestrator
    orch.subscribe(lambda old, new, state: _print(f"  [{new.value}] {orch.status_message()}"))

    _print(f"\n{'═' * 70}")
    _print(f"  LOR LEDGER DEMO  ledger={runtime.ledger_address}")
    _print(f"{'═' * 70}")

    try:
        phase = await orch.connect()
        if phase != Phase.CONNECTED:
            _print(f"\n  ✗ {orch.status_message()}")
            return 1

        client = runtime.client
        steps = []
        try:
            requested = await client.submit_request(args.name, args.course, args.email)
            steps.append(requested)
            _print(f"  ✓ {requested.message}")

            if not args.skip_approve:
                approved = await client.approve_recommendation(requested.student_id)
                steps.append(approved)
                _print(f"  ✓ {approved.message}")

            student = await client.get_student(requested.student_id)
        except LorError as e:
            _print(f"  ✗ {e.failure.message}")
            return 1

        _print(f"{'─' * 70}")
        print(json.dumps({
            "student": student.to_dict(),
            "confirmations": [c.to_dict() for c in steps],
        }, indent=2))
        return 0
    finally:
        await runtime.aclose()


def cmd_demo(args, settings) -> int:
    return asyncio.run(_run_demo(args, settings))


def cmd_config(args, settings) -> int:
    print(json.dumps({
        "ledger_address": settings.ledger_address,
        "approvers": settings.approvers,
        "max_attempts": settings.max_attempts,
        "pending_timeout": settings.pending_timeout,
        "retry_delay": settings.retry_delay,
        "expected_network_id": settings.expected_network_id,
        "agent_url": settings.agent_url,
        "log_level": settings.log_level,
    }, indent=2))
    return 0


def cmd_serve(args, settings) -> int:
    try:
        import uvicorn
    except ImportError:
        _print("Error: uvicorn is not installed (pip install uvicorn)")
        return 1
    from api.server import create_app

    uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="LOR Ledger — recommendation ledger client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", default="", help="Base config YAML (default: lor_config.yaml)")
    parser.add_argument("--env", default="", help="Config overlay profile (dev, staging, prod)")
    parser.add_argument("--log-level", default="", help="Override logging.level")

    subs = parser.add_subparsers(dest="command", help="Command")

    demo_p = subs.add_parser("demo", help="Run the full flow against an in-process chain")
    demo_p.add_argument("--name", default="Alice")
    demo_p.add_argument("--course", default="Math")
    demo_p.add_argument("--email", default="alice@email.com")
    demo_p.add_argument("--skip-approve", action="store_true",
                        help="Stop after requesting the recommendation")

    subs.add_parser("config", help="Show the resolved configuration")

    serve_p = subs.add_parser("serve", help="Serve the HTTP API")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=8080)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(load_config(base_path=args.config, env=args.env))
    except ValueError as e:
        _print(f"Error: {e}")
        return 1
    configure_logging(level=args.log_level or settings.log_level)

    if args.command == "demo":
        return cmd_demo(args, settings)
    if args.command == "config":
        return cmd_config(args, settings)
    if args.command == "serve":
        return cmd_serve(args, settings)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
