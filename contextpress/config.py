"""
Runtime configuration read from the environment (and a local .env file).
"""

import logging
import os

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ENCODING = os.getenv("CONTEXTPRESS_ENCODING", "cl100k_base")
DEFAULT_STRATEGY = os.getenv("CONTEXTPRESS_DEFAULT_STRATEGY", "balanced").lower()
LOG_RETENTION_DAYS = int(os.getenv("CONTEXTPRESS_LOG_RETENTION_DAYS", "7"))
DEFAULT_MAX_WORKERS = int(os.getenv("CONTEXTPRESS_MAX_WORKERS", "4"))
LOG_LEVEL = getattr(logging, os.getenv("CONTEXTPRESS_LOG_LEVEL", "INFO").upper(), logging.INFO)
