"""Run the AI chat JSON endpoint with uvicorn."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

import uvicorn

from aichat.api import create_app
from aichat.config import load_config
from aichat.utils import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve the AI chat endpoint. Provider credentials are read from AICHAT_* environment variables."
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8010, help="Port to bind.")
    parser.add_argument("--log_dir", help="Directory for application logs.")
    parser.add_argument("--database_url", help="SQLAlchemy URL of the durable chat store.")
    parser.add_argument("--default_service", help="Service key used when a widget asks for 'default'.")
    parser.add_argument("--api_path", help="URL path of the JSON endpoint.")
    parser.add_argument("--max_memory", type=int, help="Default number of messages sent to the provider.")
    parser.add_argument("--char_limit", type=int, help="Reject user messages longer than this (0 = unlimited).")
    parser.add_argument("--session_ttl", type=int, help="Seconds of inactivity before an ephemeral session expires.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_dir, logging.INFO)

    chat_cfg = load_config()
    if args.log_dir:
        chat_cfg.log_dir = args.log_dir
    if args.database_url:
        chat_cfg.database_url = args.database_url
    if args.default_service:
        chat_cfg.default_service = args.default_service.strip().lower()
    if args.api_path:
        chat_cfg.api_path = args.api_path
    if args.max_memory is not None:
        chat_cfg.default_max_memory = args.max_memory
    if args.char_limit is not None:
        chat_cfg.char_limit = args.char_limit
    if args.session_ttl is not None:
        chat_cfg.session_ttl_seconds = args.session_ttl

    app = create_app(chat_cfg)
    logger.info("Starting AI chat server on %s:%d (endpoint %s)", args.host, args.port, chat_cfg.api_path)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
