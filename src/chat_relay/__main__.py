"""CLI entrypoint for chat-relay."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from importlib import metadata


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-relay",
        description="Chat Relay - terminal chat client and streaming relay for hosted models",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    subparsers = parser.add_subparsers(dest="command")
    serve = subparsers.add_parser("serve", help="Run the streaming relay service")
    serve.add_argument("--host", default=None, help="Bind address (default from config)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default from config)")
    return parser


def serve(host: str | None = None, port: int | None = None) -> None:
    """Load configuration, configure logging, and run the relay service."""
    from .config import load_config
    from .logging_utils import configure_logging
    from .server import run_server

    config = load_config()
    configure_logging(config["logging"])
    run_server(config, host=host, port=port)


def main(argv: Sequence[str] | None = None) -> None:
    """Ensure configuration exists, handle CLI flags, and run the TUI or relay."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("chat-relay")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"chat-relay {version}")
        return

    from .config import ensure_config_dir

    ensure_config_dir()
    if args.command == "serve":
        serve(host=args.host, port=args.port)
        return

    from .app import ChatRelayApp

    app = ChatRelayApp()
    app.run()


if __name__ == "__main__":
    main()
