#!/usr/bin/env python3
"""
Follow one OpenCode session from the terminal.

Usage:
    python examples/tail_session.py --url http://localhost:4096 --project /work/app
    python examples/tail_session.py --profile laptop --session ses_123
    python examples/tail_session.py --profile laptop --send "Run the tests"

With --profile the server comes from ocstream_config.yaml (see
ocstream_config.yaml.example). OCSTREAM_SERVER_URL in .env is used as a
fallback.
"""

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

from ocstream import SessionOrchestrator, YamlFileStore
from ocstream.config import load_client_config
from ocstream.platform import ConnectionStateMachine

load_dotenv()


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure logging."""
    log_level = level.upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return logging.getLogger(__name__)


def print_event(event) -> None:
    who = "you" if event.role == "user" else (event.mode or "agent")
    print(f"[{who}] {event.message}")


async def main(args: argparse.Namespace, logger: logging.Logger) -> None:
    server_url = args.url
    project_path = args.project
    connection = None
    sync = None

    if not server_url and args.profile:
        config = load_client_config(args.profile)
        server_url = config.server_url
        project_path = project_path or config.project_path
        connection = ConnectionStateMachine(config=config.connection)
        sync = config.sync

    server_url = server_url or os.getenv("OCSTREAM_SERVER_URL")
    if not server_url:
        raise ValueError("Pass --url, --profile or set OCSTREAM_SERVER_URL")

    orchestrator = SessionOrchestrator(
        connection=connection,
        storage=YamlFileStore(args.state),
        config=sync,
    )

    if not await orchestrator.connect(server_url, auto_select=project_path is None):
        raise RuntimeError(f"Could not connect to {server_url}")

    if project_path:
        project = next(
            (p for p in orchestrator.projects if (p.path or "").rstrip("/") == project_path.rstrip("/")),
            None,
        )
        if project is None:
            raise ValueError(f"Project not found on server: {project_path}")
        await orchestrator.select_project(project)

    if args.session:
        await orchestrator.select_session({"id": args.session})
    elif orchestrator.selected_session is None and orchestrator.project_sessions:
        await orchestrator.select_session(orchestrator.project_sessions[0])

    if orchestrator.selected_session is None:
        raise RuntimeError("No session to follow")

    logger.info(f"Following session {orchestrator.selected_session.id}")
    for event in orchestrator.events:
        print_event(event)
    shown = {event.id for event in orchestrator.events}

    if args.send:
        await orchestrator.send_message(args.send, agent=args.agent)

    try:
        while True:
            await asyncio.sleep(0.5)
            for event in orchestrator.events:
                if event.id not in shown:
                    shown.add(event.id)
                    print_event(event)
            if orchestrator.connection.is_failed:
                logger.error(f"Connection failed: {orchestrator.error.message}")
                break
    finally:
        await orchestrator.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Follow an OpenCode session")
    parser.add_argument("--url", help="OpenCode server URL")
    parser.add_argument("--profile", help="Profile in ocstream_config.yaml")
    parser.add_argument("--project", help="Project worktree path")
    parser.add_argument("--session", help="Session id (default: most recent)")
    parser.add_argument("--send", help="Message to send before following")
    parser.add_argument("--agent", default="build", choices=["build", "plan"])
    parser.add_argument("--state", default=".ocstream_state.yaml", help="Selection state file")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logger = setup_logging(args.log_level)
    try:
        asyncio.run(main(args, logger))
    except KeyboardInterrupt:
        logger.info("Stopped")
