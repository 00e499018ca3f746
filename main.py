"""Command-line entry point: seed the FAQ corpus or launch the chat page."""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from faqbot import ChatbotPipeline, load_faqs
from faqbot.config import config

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

PROJECT_ROOT = Path(__file__).resolve().parent
CHAT_PAGE = PROJECT_ROOT / "app.py"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Portfolio FAQ chatbot: seed the corpus or serve the chat page.",
    )
    parser.add_argument(
        "--seed",
        nargs="?",
        type=Path,
        const=config.FAQ_DATA_PATH,
        default=None,
        metavar="PATH",
        help=(
            "Embed the FAQ JSON file and replace the stored corpus, then exit "
            f"(default file: {config.FAQ_DATA_PATH})."
        ),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8501,
        help="Port for the chat page (default: 8501).",
    )
    parser.add_argument(
        "--address",
        default="localhost",
        help="Bind address for the chat page (default: localhost).",
    )
    parser.add_argument(
        "--show",
        dest="headless",
        action="store_false",
        help="Open the chat page in a browser window.",
    )
    parser.set_defaults(headless=True)
    return parser.parse_args(argv)


def build_streamlit_command(
    *,
    port: int,
    address: str,
    headless: bool,
) -> list[str]:
    """Assemble the ``streamlit run`` invocation for the chat page."""  # noqa: DOC201
    return [
        sys.executable,
        "-m",
        "streamlit",
        "run",
        str(CHAT_PAGE),
        "--server.port",
        str(port),
        "--server.address",
        address,
        "--server.headless",
        str(headless).lower(),
    ]


def seed(path: Path, logger: Logger) -> int:
    """Embed ``path`` into the vector store."""  # noqa: DOC201
    try:
        faqs = load_faqs(path)
        count = asyncio.run(ChatbotPipeline().seed_faqs(faqs))
    except (OSError, ValueError, RuntimeError):
        logger.exception("Seeding from %s failed", path)
        return 1
    logger.info("Seeded %d FAQ entries into %s", count, config.VECTOR_STORE_DB_PATH)
    return 0


def serve(command: Sequence[str], logger: Logger) -> int:
    """Run the chat page until it exits and return its exit code."""  # noqa: DOC201
    try:
        completed = subprocess.run(command, check=False, cwd=PROJECT_ROOT)
    except KeyboardInterrupt:
        logger.info("Chat page stopped by user")
        return 0
    except OSError:
        logger.exception("Unable to launch the chat page")
        return 1
    if completed.returncode != 0:
        logger.error("Chat page exited with status %s", completed.returncode)
    return completed.returncode


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration, then seed or serve."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    if args.seed is not None:
        return seed(args.seed, logger)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    logger.info(
        "Serving %s at http://%s:%s (headless=%s)",
        config.CHATBOT_TITLE,
        args.address,
        args.port,
        args.headless,
    )
    command = build_streamlit_command(
        port=args.port,
        address=args.address,
        headless=args.headless,
    )
    return serve(command, logger)


if __name__ == "__main__":
    sys.exit(main())
