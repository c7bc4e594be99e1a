#!/usr/bin/env python3
"""
Local development server runner.

Runs the webhook service with uvicorn against the tables named in the
environment (or a DynamoDB Local endpoint configured through the usual
AWS variables).

Usage:
    python run_local.py
    python run_local.py --port 8000
    python run_local.py --reload  # Auto-reload on code changes
"""

import argparse
from pathlib import Path

import uvicorn

project_root = Path(__file__).parent


def main():
    parser = argparse.ArgumentParser(
        description="Run the webhook service locally with uvicorn"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the server on (default: 8000)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on code changes"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Log level for uvicorn (default: info)"
    )

    args = parser.parse_args()

    if not (project_root / ".env").exists():
        print("WARNING: .env file not found, using environment and defaults")
        print("  CRON_SECRET must be set for the trigger endpoint to accept calls")

    print("=" * 60)
    print("Starting StablePay Webhooks (Local Development)")
    print("=" * 60)
    print(f"Server:  http://{args.host}:{args.port}")
    print(f"API Docs: http://{args.host}:{args.port}/docs")
    print(f"Health:  http://{args.host}:{args.port}/health")
    print(f"Trigger: http://{args.host}:{args.port}/cron/webhooks")
    print("=" * 60)

    uvicorn.run(
        "stablepay_webhooks.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        reload_dirs=[str(project_root / "src")] if args.reload else None
    )


if __name__ == "__main__":
    main()
