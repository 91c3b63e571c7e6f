#!/usr/bin/env python3
"""
Script to run the MedBlock FastAPI application.
"""

import logging
import uvicorn

from medblock.constants import API_HOST, API_PORT, LOG_LEVEL, LEDGER_DIFFICULTY, FINGERPRINT_SCHEME

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Run the FastAPI application
if __name__ == "__main__":
    logger.info(f"Starting MedBlock API on {API_HOST}:{API_PORT} "
                f"(difficulty {LEDGER_DIFFICULTY}, fingerprint {FINGERPRINT_SCHEME})")
    uvicorn.run("medblock.api:create_app", factory=True, host=API_HOST, port=API_PORT)
