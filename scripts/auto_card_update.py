#!/usr/bin/env python3
"""
Daily automated card data update.

Picks today's rotation of cards, searches the web for each one, asks the
model for field changes, and patches the card YAML files in place. A
markdown summary for the review request is written to
.card-update-summary.md (removed when nothing changed).

Usage:
    # Normal daily run (cron / CI)
    python scripts/auto_card_update.py

    # Replay a specific rotation window without writing anything
    python scripts/auto_card_update.py --day-index 42 --dry-run

    # Shift the rotation by one day
    DAY_OFFSET=1 python scripts/auto_card_update.py

Requires BRAVE_SEARCH_API_KEY and ANTHROPIC_API_KEY in the environment or .env.
"""

import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from src.card_sync.cli import main


if __name__ == "__main__":
    sys.exit(main())
