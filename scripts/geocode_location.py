#!/usr/bin/env python3
"""Debug geocoding for a single location."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.services.geocoding import GeocodingError  # noqa: E402
from src.services.location_language import classify_complexity, detect_language  # noqa: E402
from src.services.settings import GeocodingSettings, build_resolver, load_environment  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve one place name and print the result.")
    parser.add_argument("place_name")
    parser.add_argument("--admin", default="", help="Administrative division, e.g. 'Damascus Governorate'.")
    parser.add_argument("--language", default="en")
    parser.add_argument("--no-cache", action="store_true", help="Bypass the SQLite cache.")
    parser.add_argument("--classify-only", action="store_true", help="Print language and complexity, no lookups.")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    load_environment()

    detected = detect_language(f"{args.place_name} {args.admin}".strip())
    print("Detected language:", detected)
    print("Complexity:", classify_complexity(args.place_name, args.admin, detected))
    if args.classify_only:
        return 0

    resolver = build_resolver(GeocodingSettings.from_env(), use_cache=not args.no_cache)
    try:
        result = resolver.resolve(args.place_name, args.admin, args.language)
    except GeocodingError as exc:
        print("Geocoding failed:", exc)
        return 1
    print(json.dumps(result.to_serializable(), ensure_ascii=False, indent=2))
    print("Resolver stats:", resolver.stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
