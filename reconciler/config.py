"""
Environment configuration module
Loads all environment variables used by the reconciliation engine.
"""

import os
from dotenv import load_dotenv

# Load .env file (for local development)
load_dotenv()

# Redis configuration for reviewer decisions and field overrides
# Decisions are read-only (empty) when REDIS_URL is not set
REDIS_URL = os.getenv('REDIS_URL', '')
KV_ENABLED = bool(REDIS_URL)
DECISION_TTL = int(os.getenv('DECISION_TTL', '0'))  # 0 = keep forever

# External run/transaction store (optional, REST)
RUN_STORE_URL = os.getenv('RUN_STORE_URL', '').rstrip('/')
RUN_STORE_TOKEN = os.getenv('RUN_STORE_TOKEN', '')
RUN_STORE_TIMEOUT = int(os.getenv('RUN_STORE_TIMEOUT', '30'))

# Local JSON snapshot of runs + transactions (used when RUN_STORE_URL is empty)
SNAPSHOT_PATH = os.getenv('SNAPSHOT_PATH', 'data/runs.json')

# Synthesis: fill empty winner fields from the counterpart transaction
SYNTHESIS_FILL_GAPS = os.getenv('SYNTHESIS_FILL_GAPS', 'true').lower() in ('1', 'true', 'yes')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
