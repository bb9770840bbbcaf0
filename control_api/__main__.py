"""
Entry point for running the control API.

Usage:
    python -m control_api

This starts the FastAPI server on http://0.0.0.0:8000
"""
import os

import uvicorn

from journal_core.config import get_config
from logging_setup import setup_logging

if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, use_json=True, include_pii=config.log_pii)

    uvicorn.run(
        "control_api.server:app",
        host=os.environ.get("CONTROL_API_HOST", "0.0.0.0"),
        port=int(os.environ.get("CONTROL_API_PORT", "8000")),
        log_level=config.log_level.lower(),
    )
