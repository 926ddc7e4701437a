"""
Card Sync - Automated credit card data reconciliation.

Checks a rotating daily subset of card records against live web search
results, asks a language model which fields have changed, and applies the
high-confidence changes to the YAML files with minimal diffs.

Modules:
    models - Record, proposal and run result types
    store - Card YAML loading and atomic writes
    selector - Deterministic daily rotation over active/inactive pools
    proposer - Prompt construction and reply parsing for the reasoning call
    validator - Confidence, no-op and field-value filtering
    patcher - Format-preserving YAML field patches
    reporter - Markdown review summary
    pipeline - End-to-end run orchestration (import directly)
    cli - Command-line interface entrypoint (import directly)
"""

from . import models
from . import store
from . import selector
from . import proposer
from . import validator
from . import patcher
from . import reporter

__version__ = "1.0.0"
