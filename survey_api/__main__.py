"""
Entry point for running the survey API.

Usage:
    python -m survey_api

This starts the FastAPI server on http://0.0.0.0:8000
"""
import uvicorn
from logging_setup import setup_logging

if __name__ == "__main__":
    setup_logging(use_json=True)

    uvicorn.run(
        "survey_api.server:app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
