"""CLI entry point for the BeautiBuk agent.

A terminal chat loop over the same orchestrator the API uses, for
development and manual testing.  For production, use the FastAPI server
(src/server.py).

Usage:
    python -m src.main            # normal mode (quiet)
    python -m src.main --debug    # debug mode (shows API calls)
"""

from __future__ import annotations

import argparse
import logging
import uuid

from src.agent import create_orchestrator
from src.errors import StorageFailure

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="BeautiBuk agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  BeautiBuk Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    orchestrator = create_orchestrator()
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            if user_input.lower() == "new":
                session_id = str(uuid.uuid4())
                print(f"\n>> New session started: {session_id[:8]}...\n")
                continue

            try:
                result = orchestrator.process_message(session_id, user_input)
            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break
            except StorageFailure as e:
                logger.error("Turn not saved: %s", e)
                print("\nAgent: Sorry, I couldn't save that exchange. Please send it again.\n")
                continue

            print(f"\nAgent: {result.response}\n")
    finally:
        orchestrator.close()


if __name__ == "__main__":
    main()
