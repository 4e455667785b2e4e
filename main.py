"""CLI entry point: python main.py --port 5001"""

import argparse

import uvicorn

from src.api.app import create_app
from src.settings import get_settings


def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Chat presence & event fan-out service"
    )
    parser.add_argument(
        "--host", default=settings.host,
        help=f"Interface to bind (default: {settings.host})"
    )
    parser.add_argument(
        "--port", type=int, default=settings.port,
        help=f"Port to listen on (default: {settings.port})"
    )
    parser.add_argument(
        "--database", action="store_true",
        help="Persist messages through SQLAlchemy instead of in memory"
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Override CHAT_LOG_LEVEL"
    )
    args = parser.parse_args()

    if args.database:
        settings = settings.model_copy(update={"use_database": True})
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level.upper()})

    app = create_app(settings=settings)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
