"""
Unified import: one entry point for family data, codex entries and codex
enhancements in a single JSON payload.

Phases run in order: validate, family, codex, enhancements, cloud upload.
"""

import logging
import time
from typing import Any, Callable

from cloud import CloudSyncError, force_upload_to_cloud
from database import DocumentStore, get_database
from importers.codex_import import (
    CODEX_CATEGORIES,
    enhance_codex_entries,
    normalize_codex_entries,
    process_codex_entries,
    strip_metadata,
    validate_codex_entries,
)
from importers.family_import import process_family_import, validate_template

logger = logging.getLogger("lineageweaver.import.unified")

ProgressFn = Callable[[dict[str, Any]], None]


def _is_family_house(house: Any) -> bool:
    return isinstance(house, dict) and bool(house.get("_tempId") or house.get("houseName"))


def _is_codex_shaped(item: Any) -> bool:
    return isinstance(item, dict) and bool(item.get("title") and item.get("content"))


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def detect_payload_types(payload: Any) -> dict[str, bool]:
    """Which kinds of import data a payload carries."""
    if not isinstance(payload, dict):
        return {"hasFamily": False, "hasCodex": False, "hasEnhancements": False, "hasCategoryCodex": False}

    houses = payload.get("houses")
    has_family = (
        (isinstance(houses, list) and any(_is_family_house(h) for h in houses))
        or _non_empty_list(payload.get("people"))
        or _non_empty_list(payload.get("relationships"))
    )
    has_category_codex = any(
        _non_empty_list(payload.get(key)) and any(_is_codex_shaped(item) for item in payload[key])
        for key in CODEX_CATEGORIES
    )
    return {
        "hasFamily": has_family,
        "hasCodex": _non_empty_list(payload.get("codexEntries")),
        "hasEnhancements": _non_empty_list(payload.get("codexEnhancements")),
        "hasCategoryCodex": has_category_codex,
    }


def _category_codex_entries(payload: dict[str, Any]) -> list[dict[str, Any]]:
    # family houses sit under "houses" too; only codex-shaped records count
    return [entry for entry in normalize_codex_entries(payload) if _is_codex_shaped(entry)]


def _family_template(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "houses": [h for h in payload.get("houses") or [] if _is_family_house(h) and not _is_codex_shaped(h)],
        "people": payload.get("people") or [],
        "relationships": payload.get("relationships") or [],
    }


def validate_payload(payload: Any, store: DocumentStore) -> dict[str, Any]:
    """
    Validate every part of a payload without writing.

    Returns:
        {valid, errors, warnings, counts, types}
    """
    errors: list[str] = []
    warnings: list[str] = []
    counts = {"houses": 0, "people": 0, "relationships": 0, "codexEntries": 0, "codexEnhancements": 0}

    if not isinstance(payload, dict):
        return {"valid": False, "errors": ["Payload must be a non-null object"], "warnings": warnings,
                "counts": counts, "types": detect_payload_types(payload)}

    payload = strip_metadata(payload)
    types = detect_payload_types(payload)

    if types["hasFamily"]:
        template = _family_template(payload)
        family = validate_template(store, template)
        errors.extend(family["errors"])
        warnings.extend(family["warnings"])
        counts["houses"] = len(template["houses"])
        counts["people"] = len(template["people"])
        counts["relationships"] = len(template["relationships"])

    if types["hasCodex"]:
        codex = validate_codex_entries(payload["codexEntries"])
        errors.extend(codex["errors"])
        counts["codexEntries"] += len(payload["codexEntries"])

    if types["hasCategoryCodex"]:
        entries = _category_codex_entries(payload)
        codex = validate_codex_entries(entries)
        errors.extend(codex["errors"])
        counts["codexEntries"] += len(entries)

    if types["hasEnhancements"]:
        for index, enhancement in enumerate(payload["codexEnhancements"]):
            if not isinstance(enhancement, dict):
                errors.append(f"codexEnhancements[{index}] must be an object")
            elif not isinstance(enhancement.get("targetTitle"), str) or not enhancement["targetTitle"]:
                errors.append(f"codexEnhancements[{index}] missing required field: targetTitle")
        counts["codexEnhancements"] = len(payload["codexEnhancements"])

    if sum(counts.values()) == 0:
        warnings.append("Payload contains no recognizable import data")

    return {"valid": not errors, "errors": errors, "warnings": warnings, "counts": counts, "types": types}


def unified_import(
    payload: Any,
    store: DocumentStore | None = None,
    user_id: str | None = None,
    dataset_id: str | None = None,
    on_progress: ProgressFn | None = None,
    skip_duplicates: bool = True,
    dry_run: bool = False,
    skip_codex: bool = False,
    skip_enhancements: bool = False,
) -> dict[str, Any]:
    """
    Import everything a payload carries into one dataset.

    Args:
        payload: JSON object with any of houses/people/relationships,
            codexEntries, category-keyed codex arrays and codexEnhancements
        store: Target dataset; defaults to the store for dataset_id
        user_id: Upload the dataset to this user's cloud copy when done
        on_progress: Called with {phase, message, percent}
        skip_duplicates: Skip codex entries whose title already exists
        dry_run: Validate only

    Returns:
        {success, errors, warnings, summary, created, idMappings, timing}
    """
    store = store or get_database(dataset_id)
    started = time.time()

    def progress(phase: str, message: str, percent: float) -> None:
        if on_progress:
            on_progress({"phase": phase, "message": message, "percent": round(percent)})

    result: dict[str, Any] = {
        "success": False,
        "errors": [],
        "warnings": [],
        "summary": {
            "housesCreated": 0,
            "peopleCreated": 0,
            "relationshipsCreated": 0,
            "codexEntriesCreated": 0,
            "codexEntriesSkipped": 0,
            "codexEntriesEnhanced": 0,
        },
        "created": {"houses": [], "people": [], "relationships": [], "codexEntries": []},
        "idMappings": {"houses": {}, "people": {}, "codex": {}},
        "timing": {"start": started, "end": None, "duration": None},
    }

    def finish() -> dict[str, Any]:
        ended = time.time()
        result["timing"]["end"] = ended
        result["timing"]["duration"] = int((ended - started) * 1000)
        return result

    progress("validate", "Validating payload...", 0)
    validation = validate_payload(payload, store)
    result["warnings"].extend(validation["warnings"])
    if not validation["valid"]:
        result["errors"].extend(validation["errors"])
        return finish()
    if dry_run:
        result["success"] = True
        return finish()

    payload = strip_metadata(payload)
    types = validation["types"]

    if types["hasFamily"]:
        progress("family", "Importing family data...", 10)
        family = process_family_import(
            store,
            _family_template(payload),
            user_id=None,
            skip_codex=True,
            on_progress=lambda p: progress("family", p["message"], 30),
        )
        result["errors"].extend(family["errors"] or [])
        if family["created"]:
            for kind in ("houses", "people", "relationships"):
                result["created"][kind] = family["created"][kind]
            result["idMappings"]["houses"] = family["idMappings"]["houses"]
            result["idMappings"]["people"] = family["idMappings"]["people"]
            result["summary"]["housesCreated"] = family["summary"]["housesCreated"]
            result["summary"]["peopleCreated"] = family["summary"]["peopleCreated"]
            result["summary"]["relationshipsCreated"] = family["summary"]["relationshipsCreated"]

    if not skip_codex and (types["hasCodex"] or types["hasCategoryCodex"]):
        progress("codex", "Importing codex entries...", 50)
        entries = list(payload.get("codexEntries") or []) if types["hasCodex"] else []
        if types["hasCategoryCodex"]:
            entries.extend(_category_codex_entries(payload))

        seen: set[str] = set()
        unique = []
        for entry in entries:
            title = entry.get("title") if isinstance(entry, dict) else None
            if isinstance(title, str):
                if title in seen:
                    continue
                seen.add(title)
            unique.append(entry)

        codex = process_codex_entries(
            store,
            unique,
            user_id=None,
            skip_duplicates=skip_duplicates,
            house_id_map=result["idMappings"]["houses"],
            person_id_map=result["idMappings"]["people"],
            on_progress=lambda p: progress("codex", str(p["current"]), 50 + p["processed"] / p["total"] * 40),
        )
        result["created"]["codexEntries"] = codex["created"]
        result["summary"]["codexEntriesCreated"] = len(codex["created"])
        result["summary"]["codexEntriesSkipped"] = len(codex["skipped"])
        result["errors"].extend(f"Codex: {e['title']}: {e['error']}" for e in codex["errors"])
        result["idMappings"]["codex"] = {c["title"]: c["id"] for c in codex["created"]}

    if not skip_enhancements and types["hasEnhancements"]:
        progress("enhance", "Enhancing codex entries...", 90)
        enhanced = enhance_codex_entries(store, payload["codexEnhancements"])
        result["summary"]["codexEntriesEnhanced"] = len(enhanced["enhanced"])
        result["errors"].extend(f"Enhancement: {e['title']}: {e['error']}" for e in enhanced["errors"])
        if enhanced["notFound"]:
            result["warnings"].append(f"Enhancement targets not found: {', '.join(map(str, enhanced['notFound']))}")

    if user_id:
        progress("sync", "Syncing to cloud...", 95)
        try:
            force_upload_to_cloud(user_id, store)
        except CloudSyncError as e:
            logger.warning(f"Cloud upload after import failed: {e}")
            result["warnings"].append(f"Cloud sync warning: {e}")

    result["success"] = not result["errors"]
    progress("done", "Import complete", 100)
    logger.info(f"Unified import finished: {result['summary']}, {len(result['errors'])} errors")
    return finish()


def generate_unified_report(result: dict[str, Any]) -> str:
    summary = result["summary"]
    lines = [
        "UNIFIED IMPORT REPORT",
        "=" * 50,
        f"Status: {'SUCCESS' if result['success'] else 'FAILED'}",
        f"Duration: {result['timing']['duration']}ms",
        "",
        "SUMMARY:",
        f"  Houses created:         {summary['housesCreated']}",
        f"  People created:         {summary['peopleCreated']}",
        f"  Relationships created:  {summary['relationshipsCreated']}",
        f"  Codex entries created:  {summary['codexEntriesCreated']}",
        f"  Codex entries skipped:  {summary['codexEntriesSkipped']}",
        f"  Codex entries enhanced: {summary['codexEntriesEnhanced']}",
    ]
    if result["warnings"]:
        lines.extend(["", "WARNINGS:"])
        lines.extend(f"  - {w}" for w in result["warnings"])
    if result["errors"]:
        lines.extend(["", "ERRORS:"])
        lines.extend(f"  - {e}" for e in result["errors"])
    return "\n".join(lines)
