#!/usr/bin/env python3
"""
Celery worker script for the storefront admission service.
Runs the worker with an embedded beat scheduler so the daily
subscription expiry sweep fires without a separate beat process.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    import models  # noqa: F401
    from core.celery import celery_app

    # Start Celery worker
    celery_app.start([
        "worker",
        "--beat",
        "--loglevel=info",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])
