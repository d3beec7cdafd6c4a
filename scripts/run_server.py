#!/usr/bin/env python3
"""
Start the run record API server.
"""

import argparse
import os
import sys
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from src.core.config import HOST, PORT, load_config, validate_config


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the run record API server")
    parser.add_argument("--host", default=HOST, help=f"Bind address (default: {HOST})")
    parser.add_argument("--port", type=int, default=PORT, help=f"Bind port (default: {PORT})")
    parser.add_argument("--db-path", help="Database file (overrides DB_PATH)")
    args = parser.parse_args()

    if args.db_path:
        os.environ["DB_PATH"] = args.db_path

    config = load_config()
    issues = validate_config(config)
    if issues:
        print(f"❌ Invalid configuration: {issues}")
        return 1

    print(f"🚀 Run record API on http://{args.host}:{args.port}")
    print(f"📋 Database: {config.db_path}")
    print(f"🧹 Retention: {config.max_records} records, {config.max_age_minutes} minutes, "
          f"sweep every {config.cleanup_interval_ms / 1000 / 60:g} minutes")

    from src.api.main import create_app

    # uvicorn handles SIGINT/SIGTERM and runs the app lifespan shutdown
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
