#!/usr/bin/env python3
"""
Entry point for geocoding and reconciling a batch of violation submissions.

Usage:
    python3 scripts/ingest_violations.py submissions.jsonl --store datasets/violations/violations.jsonl
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.violation_ingestion import main


if __name__ == "__main__":
    raise SystemExit(main())
