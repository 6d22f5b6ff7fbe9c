"""Command line entry point.

Usage:
    agent-actions serve [--host HOST] [--port PORT]
    agent-actions reconcile --agent AGENT_ID --user USER_ID [--admin]
    agent-actions reconcile --action ACTION_ID
"""

import argparse
import json
import sys
from typing import List, Optional

from .config import get_settings
from .errors import ActionSyncError
from .logging_config import get_logger, setup_logging
from .models import Identity, SystemRole

logger = get_logger(__name__)


def serve(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Start the HTTP server."""
    import uvicorn

    from .server import create_app

    settings = get_settings()
    host = host or settings.server_host
    port = port or settings.server_port

    logger.info(
        "Starting agent actions server",
        extra={"host": host, "port": port, "config": settings.get_safe_dict()},
    )
    uvicorn.run(create_app(), host=host, port=port, log_level=settings.log_level.lower())


def reconcile(args: argparse.Namespace) -> int:
    """Reconcile one agent or one action and print the summary as JSON."""
    from .router import get_synchronizer

    sync = get_synchronizer()
    try:
        if args.action:
            result = sync.reconcile_action(args.action)
        else:
            role = SystemRole.ADMIN if args.admin else SystemRole.USER
            result = sync.reconcile_agent(args.agent, Identity(id=args.user, role=role))
    except ActionSyncError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-actions", description="Agent action synchronizer")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)

    reconcile_parser = subparsers.add_parser("reconcile", help="Repair drifted references")
    target = reconcile_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--agent", help="Agent id to reconcile")
    target.add_argument("--action", help="Action id whose cascade should be re-run")
    reconcile_parser.add_argument("--user", help="Acting user id (required with --agent)")
    reconcile_parser.add_argument("--admin", action="store_true", help="Act with the admin role")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(get_settings().log_level, use_stderr=True)

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    if args.agent and not args.user:
        parser.error("--user is required with --agent")
    return reconcile(args)


if __name__ == "__main__":
    sys.exit(main())
