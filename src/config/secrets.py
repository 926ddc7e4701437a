"""
Secret management for API keys.

Usage:
    from src.config.secrets import get_brave_search_key, get_anthropic_key

    # Will raise if key is missing
    key = get_anthropic_key()

CLI check:
    python -m src.config.secrets --check
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Find .env file - walk up from this file to repo root
_current = Path(__file__).resolve()
_repo_root = _current.parent.parent.parent  # src/config/secrets.py -> repo root
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    # Also try current working directory
    load_dotenv()


BRAVE_SEARCH_KEY_NAME = "BRAVE_SEARCH_API_KEY"
ANTHROPIC_KEY_NAME = "ANTHROPIC_API_KEY"


class MissingAPIKeyError(Exception):
    """Raised when a required API key is not configured."""
    pass


def _require_key(name: str) -> str:
    key = os.environ.get(name, "").strip()
    if not key:
        raise MissingAPIKeyError(
            f"{name} not found. "
            "Copy .env.example to .env and add your key."
        )
    return key


def get_brave_search_key() -> str:
    """
    Get Brave Search API key from environment.

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If BRAVE_SEARCH_API_KEY is not set
    """
    return _require_key(BRAVE_SEARCH_KEY_NAME)


def get_anthropic_key() -> str:
    """
    Get Anthropic API key from environment.

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If ANTHROPIC_API_KEY is not set
    """
    return _require_key(ANTHROPIC_KEY_NAME)


def check_keys() -> dict:
    """
    Check which API keys are configured.

    Returns:
        dict: Status of each key ("OK" or "MISSING")
    """
    status = {}
    for name in (BRAVE_SEARCH_KEY_NAME, ANTHROPIC_KEY_NAME):
        status[name] = "OK" if os.environ.get(name, "").strip() else "MISSING"
    return status


def _cli_check():
    """CLI entry point for --check flag."""
    status = check_keys()
    all_ok = True

    for key_name, key_status in status.items():
        print(f"{key_name}: {key_status}")
        if key_status == "MISSING":
            all_ok = False

    if not all_ok:
        print("\nTo configure keys:")
        print("  1. Copy .env.example to .env")
        print("  2. Add your API keys to .env")
        sys.exit(1)
    else:
        print("\nAll keys configured.")
        sys.exit(0)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Check API key configuration"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check if API keys are configured"
    )

    args = parser.parse_args()

    if args.check:
        _cli_check()
    else:
        parser.print_help()
