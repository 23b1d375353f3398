"""
Batch ingestion of structured violation submissions.

Each submission is geocoded (when it lacks coordinates), compared against stored
records and then created, merged into an existing record, or skipped. Records are
persisted in a JSONL file that is rewritten atomically at the end of a run.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import tempfile
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from src.services.duplicates import (
    CandidateFilters,
    MatchResult,
    RELATIONSHIP_IDENTICAL,
    find_candidates,
    matches_filters,
    rank_duplicates,
)
from src.services.geocoding import (
    GeocodeNotFound,
    GeocodeResolver,
    GeocodingError,
    ResolutionResult,
    generate_cache_key,
)
from src.services.location_language import LANGUAGE_AR, LANGUAGE_EN
from src.services.merging import MergeStrategy, merge
from src.services.settings import GeocodingSettings, build_resolver, load_environment
from src.services.violations import ViolationRecord

LOGGER = logging.getLogger(__name__)

VIOLATION_NAMESPACE = uuid.UUID("b6c1f3e2-5d0a-4f7e-9c61-2a8e4d3f7b10")

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_SKIP = "skip"
ACTION_FAILED = "failed"

DEFAULT_MAX_WORKERS = 4


def build_record_id(record: ViolationRecord) -> str:
    base = "|".join(
        [
            record.type,
            record.date.date().isoformat() if record.date else "",
            (record.location.name.en or record.location.name.ar or "").strip().lower(),
            (record.description.en or record.description.ar or "")[:200].strip().lower(),
        ]
    )
    return str(uuid.uuid5(VIOLATION_NAMESPACE, base))


def _load_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    rows: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
    return rows


def _write_jsonl_atomic(path: Path, records: Iterable[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding="utf-8") as handle:
        for record in records:
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        temp_name = handle.name
    os.replace(temp_name, path)


class JsonlViolationStore:
    """Canonical violation records kept in memory and persisted as JSONL."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._records: dict[str, ViolationRecord] = {}
        for row in _load_jsonl(path):
            record = ViolationRecord.from_dict(row)
            if not record.id:
                record = replace(record, id=build_record_id(record))
            self._records[record.id] = record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, record_id: str) -> Optional[ViolationRecord]:
        with self._lock:
            return self._records.get(record_id)

    def all(self) -> list[ViolationRecord]:
        with self._lock:
            return list(self._records.values())

    def query(self, filters: CandidateFilters, limit: int) -> list[ViolationRecord]:
        with self._lock:
            matches = [record for record in self._records.values() if matches_filters(record, filters)]
        matches.sort(key=lambda record: record.date or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return matches[:limit]

    def add(self, record: ViolationRecord) -> ViolationRecord:
        if not record.id:
            record = replace(record, id=build_record_id(record))
        with self._lock:
            self._records[record.id] = record
        return record

    def save(self) -> None:
        with self._lock:
            rows = [record.to_serializable() for record in self._records.values()]
        _write_jsonl_atomic(self.path, rows)
        LOGGER.info("Wrote %s violation records to %s", len(rows), self.path)


@dataclass
class ReconcileDecision:
    action: str
    record: ViolationRecord
    target_id: Optional[str] = None
    match: Optional[MatchResult] = None

    def to_serializable(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "record_id": self.record.id,
            "target_id": self.target_id,
            "match": self.match.to_serializable() if self.match else None,
        }


def reconcile(
    new_record: ViolationRecord,
    candidates: Sequence[ViolationRecord],
    strategy: Optional[MergeStrategy] = None,
) -> ReconcileDecision:
    """Decide whether ``new_record`` is new, a richer copy of a stored record, or a repeat."""
    duplicates = rank_duplicates(new_record, candidates)
    if not duplicates:
        return ReconcileDecision(action=ACTION_CREATE, record=new_record)
    best = duplicates[0]
    existing = best.candidate
    if best.relationship_type == RELATIONSHIP_IDENTICAL:
        return ReconcileDecision(action=ACTION_SKIP, record=existing, target_id=existing.id, match=best)
    merged = merge(existing, new_record, strategy)
    return ReconcileDecision(action=ACTION_UPDATE, record=merged, target_id=existing.id, match=best)


@dataclass
class RecordOutcome:
    index: int
    action: str
    record_id: Optional[str] = None
    target_id: Optional[str] = None
    coordinates: Optional[list[float]] = None
    from_cache: bool = False
    api_calls_used: int = 0
    error: Optional[str] = None
    match: Optional[dict[str, Any]] = None

    def to_serializable(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "action": self.action,
            "record_id": self.record_id,
            "target_id": self.target_id,
            "coordinates": self.coordinates,
            "from_cache": self.from_cache,
            "api_calls_used": self.api_calls_used,
            "error": self.error,
            "match": self.match,
        }


LocationQuery = tuple[str, str, str]


@dataclass
class _Prepared:
    index: int
    outcome: RecordOutcome
    record: Optional[ViolationRecord] = None
    queries: tuple[LocationQuery, ...] = ()


@dataclass
class _Geocoded:
    result: Optional[ResolutionResult] = None
    error: Optional[str] = None
    api_calls_used: int = 0


def _location_queries(record: ViolationRecord) -> tuple[LocationQuery, ...]:
    """One (name, admin, language) lookup per localized name, English first."""
    name = record.location.name
    admin = record.location.administrative_division
    queries: list[LocationQuery] = []
    if name.en:
        queries.append((name.en, admin.en or "", LANGUAGE_EN))
    if name.ar:
        queries.append((name.ar, admin.ar or "", LANGUAGE_AR))
    return tuple(queries)


def _batch_key(queries: Sequence[LocationQuery]) -> tuple[str, ...]:
    return tuple(generate_cache_key(*query) for query in queries)


class ViolationIngestor:
    """Geocode and reconcile a batch of submissions against a record store."""

    def __init__(
        self,
        store: JsonlViolationStore,
        resolver: Optional[GeocodeResolver] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        merge_strategy: Optional[MergeStrategy] = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.max_workers = max(1, max_workers)
        self.merge_strategy = merge_strategy
        self.metrics: dict[str, int] = {
            ACTION_CREATE: 0,
            ACTION_UPDATE: 0,
            ACTION_SKIP: 0,
            ACTION_FAILED: 0,
            "geocode_failures": 0,
        }

    def _prepare(self, index: int, payload: dict[str, Any]) -> _Prepared:
        outcome = RecordOutcome(index=index, action=ACTION_FAILED)
        prepared = _Prepared(index=index, outcome=outcome)
        try:
            record = ViolationRecord.from_dict(payload)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Skipping malformed record #%s: %s", index, exc, exc_info=True)
            outcome.error = f"invalid record: {exc}"
            return prepared
        prepared.record = record
        if record.coordinates is not None:
            outcome.coordinates = list(record.coordinates)
        elif self.resolver is not None:
            prepared.queries = _location_queries(record)
            if not prepared.queries:
                outcome.error = "missing location name"
        return prepared

    def _resolve_one(self, query: LocationQuery) -> _Geocoded:
        if self.resolver is None:
            return _Geocoded(error="geocoding disabled")
        name, admin, language = query
        try:
            result = self.resolver.resolve(name, admin, language)
        except GeocodeNotFound as exc:
            LOGGER.warning("%s", exc)
            return _Geocoded(error=str(exc), api_calls_used=exc.api_calls_used)
        except GeocodingError as exc:
            LOGGER.warning("Geocoding failed for '%s': %s", name, exc)
            return _Geocoded(error=str(exc))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected error while geocoding '%s'", name)
            return _Geocoded(error=f"geocoding error: {exc}")
        return _Geocoded(result=result, api_calls_used=result.api_calls_used)

    def _geocode(self, queries: tuple[LocationQuery, ...]) -> _Geocoded:
        """Resolve every localized name and keep the highest-quality hit."""
        attempts = [self._resolve_one(query) for query in queries]
        api_calls = sum(attempt.api_calls_used for attempt in attempts)
        hits = [attempt.result for attempt in attempts if attempt.result is not None]
        if not hits:
            return _Geocoded(error=attempts[0].error, api_calls_used=api_calls)
        best = max(hits, key=lambda result: result.quality)
        return _Geocoded(result=best, api_calls_used=api_calls)

    def _apply_geocode(self, prepared: _Prepared, geocoded: _Geocoded, first_in_batch: bool) -> None:
        outcome = prepared.outcome
        if first_in_batch:
            outcome.api_calls_used = geocoded.api_calls_used
        if geocoded.result is None or prepared.record is None:
            outcome.error = geocoded.error
            return
        location = replace(prepared.record.location, coordinates=geocoded.result.coordinates)
        prepared.record = replace(prepared.record, location=location)
        outcome.coordinates = list(geocoded.result.coordinates)
        outcome.from_cache = geocoded.result.from_cache

    def _reconcile(self, prepared: _Prepared) -> RecordOutcome:
        outcome = prepared.outcome
        record = prepared.record
        if record is None:
            return outcome
        try:
            candidates = find_candidates(record, self.store)
            decision = reconcile(record, candidates, self.merge_strategy)
            if decision.action == ACTION_SKIP:
                stored = decision.record
            else:
                stored = self.store.add(decision.record)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Failed to reconcile record #%s", prepared.index)
            outcome.action = ACTION_FAILED
            outcome.error = str(exc)
            return outcome
        outcome.action = decision.action
        outcome.record_id = stored.id
        outcome.target_id = decision.target_id
        outcome.match = decision.match.to_serializable() if decision.match else None
        return outcome

    def process(self, payloads: Sequence[dict[str, Any]]) -> list[RecordOutcome]:
        """Geocode unique locations concurrently, then reconcile in submission order."""
        prepared = [self._prepare(index, payload) for index, payload in enumerate(payloads)]

        # Each distinct location in the batch is resolved once.
        unique: dict[tuple[str, ...], tuple[LocationQuery, ...]] = {}
        for item in prepared:
            if item.queries:
                unique.setdefault(_batch_key(item.queries), item.queries)
        if unique:
            keys = list(unique)
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                geocoded = dict(zip(keys, executor.map(self._geocode, [unique[key] for key in keys])))
            seen: set[tuple[str, ...]] = set()
            for item in prepared:
                if not item.queries:
                    continue
                key = _batch_key(item.queries)
                self._apply_geocode(item, geocoded[key], key not in seen)
                seen.add(key)

        # Reconciliation is sequential so later submissions see earlier ones.
        outcomes = [self._reconcile(item) for item in prepared]
        for outcome in outcomes:
            self.metrics[outcome.action] = self.metrics.get(outcome.action, 0) + 1
            if outcome.error and outcome.coordinates is None:
                self.metrics["geocode_failures"] += 1
        LOGGER.info(
            "Processed %s records: created=%s updated=%s skipped=%s failed=%s",
            len(outcomes),
            self.metrics[ACTION_CREATE],
            self.metrics[ACTION_UPDATE],
            self.metrics[ACTION_SKIP],
            self.metrics[ACTION_FAILED],
        )
        return outcomes

    def write_run_log(self, output_dir: Path) -> Path:
        log_path = output_dir / "run_log.csv"
        header = [
            "# fields: timestamp_iso,created,updated,skipped,failed,geocode_cache_hits,geocode_premium_hits,geocode_bulk_hits,geocode_failures,premium_calls_used",
        ]
        stats = self.resolver.stats if self.resolver else {}
        budget_used = self.resolver.budget.calls_used_today if self.resolver else 0
        line = ",".join(
            [
                datetime.now(timezone.utc).isoformat(),
                str(self.metrics.get(ACTION_CREATE, 0)),
                str(self.metrics.get(ACTION_UPDATE, 0)),
                str(self.metrics.get(ACTION_SKIP, 0)),
                str(self.metrics.get(ACTION_FAILED, 0)),
                str(stats.get("cache_hits", 0)),
                str(stats.get("premium_hits", 0)),
                str(stats.get("bulk_hits", 0)),
                str(stats.get("failures", 0)),
                str(budget_used),
            ]
        )
        if not log_path.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text("\n".join(header + [line]) + "\n", encoding="utf-8")
            return log_path
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return log_path


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Geocode and reconcile a batch of violation records.")
    parser.add_argument("input", type=Path, help="JSONL file with one structured violation per line.")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="JSONL store of canonical records (default: VIOLATIONS_STORE_PATH or datasets/violations/violations.jsonl).",
    )
    parser.add_argument(
        "--geocode-cache",
        type=Path,
        default=None,
        help="Path to the SQLite geocoding cache (default: GEOCODE_CACHE_PATH).",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("datasets/violations"),
        help="Directory for run_log.csv (default: datasets/violations).",
    )
    parser.add_argument("--max-workers", type=int, default=DEFAULT_MAX_WORKERS)
    parser.add_argument(
        "--disable-geocoding",
        action="store_true",
        help="Skip geocoding lookups (records without coordinates stay unresolved).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Do not rewrite the store.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    LOGGER.info("Starting violation ingestion with args: %s", args)
    load_environment()

    settings = GeocodingSettings.from_env()
    if args.geocode_cache:
        settings.cache_path = args.geocode_cache
    if args.store:
        settings.store_path = args.store

    try:
        payloads = _load_jsonl(args.input)
        store = JsonlViolationStore(settings.store_path)
        resolver = None if args.disable_geocoding else build_resolver(settings)
        ingestor = ViolationIngestor(store, resolver=resolver, max_workers=args.max_workers)
        outcomes = ingestor.process(payloads)
        if not args.dry_run:
            store.save()
        ingestor.write_run_log(args.output_dir)
    except Exception:  # noqa: BLE001
        LOGGER.exception("Violation ingestion failed.")
        return 1

    for outcome in outcomes:
        print(json.dumps(outcome.to_serializable(), ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
