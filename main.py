"""Tavern Context: dev launcher. Serves the diagnostic API in watch mode."""

import argparse
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = os.getenv("PORT", "13015")


def main():
    parser = argparse.ArgumentParser(description="Tavern Context dev launcher")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON config file (default: $TAVERN_CONFIG)")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=int(PORT))
    parser.add_argument("--no-reload", action="store_true",
                        help="Disable auto-reload on source changes")
    args = parser.parse_args()

    # The factory reads TAVERN_CONFIG, so pass the path through the environment.
    if args.config:
        os.environ["TAVERN_CONFIG"] = str(args.config.resolve())

    print(f"Starting Tavern Context on http://{args.host}:{args.port} ...")
    uvicorn.run(
        "tavern_context.api:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=not args.no_reload,
    )


if __name__ == "__main__":
    main()
