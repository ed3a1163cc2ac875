"""
Codex import, validation and merge.

Reads category-keyed lore payloads ({"houses": [...], "locations": [...]})
or flat entry lists, validates each record, skips titles that already exist
and writes the rest one at a time. A failed write is recorded and the batch
carries on.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import codex_service
import genealogy
from database import DocumentStore
from errors import ImportValidationError

logger = logging.getLogger("lineageweaver.import.codex")

METADATA_KEYS = ("_meta", "_metadata", "_comment", "_instructions", "_version", "_notes", "$schema")

CODEX_CATEGORIES = ("houses", "locations", "events", "personages", "mysteria", "concepts")

# category key -> entry type
CATEGORY_TYPES = {
    "houses": "house",
    "locations": "location",
    "events": "event",
    "personages": "personage",
    "mysteria": "mysteria",
    "concepts": "concept",
}

REQUIRED_FIELDS = ("title", "type", "content")

CreateEntryFn = Callable[..., int]
ProgressFn = Callable[[dict[str, Any]], None]


def strip_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level annotation keys that import files carry for humans."""
    return {key: value for key, value in payload.items() if key not in METADATA_KEYS}


def _missing_fields(item: Any) -> list[str]:
    """Required fields that are absent, empty or not strings."""
    if not isinstance(item, dict):
        return list(REQUIRED_FIELDS)
    return [field for field in REQUIRED_FIELDS if not (isinstance(item.get(field), str) and item[field])]


# ============================================================================
# Validation
# ============================================================================

def validate_data_structure(data: Any) -> dict[str, Any]:
    """
    Validate a category-keyed codex payload.

    Returns:
        {valid, errors, categories, counts}
    """
    errors: list[str] = []
    if not isinstance(data, dict):
        return {"valid": False, "errors": ["Data must be an object"], "categories": [], "counts": {}}

    categories = [key for key in CODEX_CATEGORIES if key in data]
    if not categories:
        errors.append(
            "Data must contain at least one valid category "
            "(houses, locations, events, personages, mysteria, concepts)"
        )

    counts: dict[str, int] = {}
    for category in categories:
        items = data[category]
        if not isinstance(items, list):
            errors.append(f"{category} must be an array")
            continue
        counts[category] = len(items)
        for index, item in enumerate(items):
            for field in _missing_fields(item):
                errors.append(f"{category}[{index}] missing required field: {field}")

    return {"valid": not errors, "errors": errors, "categories": categories, "counts": counts}


def get_import_preview(payload: Any) -> dict[str, Any]:
    """What an import would do, without touching the store."""
    data = strip_metadata(payload) if isinstance(payload, dict) else payload
    validation = validate_data_structure(data)
    return {
        "valid": validation["valid"],
        "errors": validation["errors"],
        "categories": validation["categories"],
        "counts": validation["counts"],
        "total": sum(validation["counts"].values()),
    }


def normalize_codex_entries(data: Any) -> list[dict[str, Any]]:
    """Flatten category-keyed data into one list, filling type from the category."""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []

    entries = []
    for category in CODEX_CATEGORIES:
        items = data.get(category)
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, dict):
                entries.append({**item, "type": item.get("type") or CATEGORY_TYPES[category]})
    return entries


def validate_codex_entries(entries: Any) -> dict[str, Any]:
    if not isinstance(entries, list):
        return {"valid": False, "errors": ["Codex entries must be an array"]}

    errors = [
        f"codexEntries[{index}] missing required field: {field}"
        for index, item in enumerate(entries)
        for field in _missing_fields(item)
    ]
    return {"valid": not errors, "errors": errors}


# ============================================================================
# Import
# ============================================================================

def import_codex_data(
    store: DocumentStore,
    payload: Any,
    skip_duplicates: bool = True,
    on_progress: ProgressFn | None = None,
    validate_only: bool = False,
    user_id: str | None = None,
    create_entry: CreateEntryFn | None = None,
) -> dict[str, Any]:
    """
    Import a category-keyed codex payload.

    Args:
        store: Dataset to write into
        payload: {"houses": [...], "locations": [...], ...}
        skip_duplicates: Skip records whose title exactly matches an existing entry
        on_progress: Called after every record with {processed, total, current, status}
        validate_only: Return the validation result without writing
        user_id: Mirror each created entry to this user's cloud dataset
        create_entry: Create callable, called as create_entry(store, item, user_id=...)

    Returns:
        {houses, locations, ..., errors, skipped, timing}

    Raises:
        ImportValidationError: if any record fails validation; nothing is written
    """
    if not isinstance(payload, dict):
        raise ImportValidationError("Invalid data structure: Data must be an object", ["Data must be an object"])

    data = strip_metadata(payload)
    validation = validate_data_structure(data)
    if not validation["valid"]:
        raise ImportValidationError(
            f"Invalid data structure: {', '.join(validation['errors'])}",
            validation["errors"],
        )
    if validate_only:
        return validation

    create = create_entry or codex_service.create_entry
    started = datetime.now(timezone.utc)
    results: dict[str, Any] = {category: [] for category in CODEX_CATEGORIES}
    results["errors"] = []
    results["skipped"] = []

    existing_titles = {e.get("title") for e in codex_service.get_all_entries(store)} if skip_duplicates else set()
    total = sum(len(data.get(category) or []) for category in CODEX_CATEGORIES)
    processed = 0

    for category in CODEX_CATEGORIES:
        for item in data.get(category) or []:
            processed += 1
            title = item.get("title")

            if skip_duplicates and title in existing_titles:
                results["skipped"].append({"type": category, "title": title, "reason": "Duplicate title"})
                _report(on_progress, processed, total, title, "skipped")
                continue

            try:
                entry_id = create(store, item, user_id=user_id)
            except Exception as e:
                logger.error(f"Failed to import codex entry '{title}': {e}")
                results["errors"].append({"type": category, "title": title, "error": str(e)})
                _report(on_progress, processed, total, title, "error")
                continue

            results[category].append({"title": title, "id": entry_id})
            if skip_duplicates:
                existing_titles.add(title)
            _report(on_progress, processed, total, title, "success")

    ended = datetime.now(timezone.utc)
    results["timing"] = {
        "start": started.isoformat(),
        "end": ended.isoformat(),
        "duration": int((ended - started).total_seconds() * 1000),
    }
    logger.info(format_import_summary(results).replace("\n", " | "))
    return results


def _report(on_progress: ProgressFn | None, processed: int, total: int, current: Any, status: str) -> None:
    if on_progress:
        on_progress({"processed": processed, "total": total, "current": current, "status": status})


def _resolve_ref(ref: Any, id_map: dict[str, int] | None) -> int | None:
    """A positive int is an existing record id; a string is looked up as a temp id."""
    if isinstance(ref, int) and not isinstance(ref, bool) and ref > 0:
        return ref
    if isinstance(ref, str) and ref and id_map:
        return id_map.get(ref)
    return None


def resolve_auto_link(
    auto_link: dict[str, Any],
    house_id_map: dict[str, int] | None,
    person_id_map: dict[str, int] | None,
) -> dict[str, int]:
    """
    Turn an _autoLink block into houseId/personId fields.

    Accepts both {houseRef, personRef} and {entityType, entityId, personId}.
    """
    links: dict[str, int] = {}
    house_ref = auto_link.get("houseRef")
    if house_ref is None and auto_link.get("entityType") == "house":
        house_ref = auto_link.get("entityId")
    person_ref = auto_link.get("personRef")
    if person_ref is None and auto_link.get("entityType") == "person":
        person_ref = auto_link.get("personId") or auto_link.get("entityId")

    house_id = _resolve_ref(house_ref, house_id_map)
    if house_id:
        links["houseId"] = house_id
    person_id = _resolve_ref(person_ref, person_id_map)
    if person_id:
        links["personId"] = person_id
    return links


def process_codex_entries(
    store: DocumentStore,
    entries: list[dict[str, Any]],
    user_id: str | None = None,
    skip_duplicates: bool = True,
    house_id_map: dict[str, int] | None = None,
    person_id_map: dict[str, int] | None = None,
    on_progress: ProgressFn | None = None,
    create_entry: CreateEntryFn | None = None,
) -> dict[str, Any]:
    """
    Write a flat list of codex entries, resolving _autoLink references.

    Invalid records are reported in errors and never written.

    Returns:
        {created, skipped, errors}
    """
    create = create_entry or codex_service.create_entry
    result: dict[str, list[dict[str, Any]]] = {"created": [], "skipped": [], "errors": []}
    if not entries:
        return result

    existing_titles = {e.get("title") for e in codex_service.get_all_entries(store)} if skip_duplicates else set()
    total = len(entries)

    for index, item in enumerate(entries, start=1):
        missing = _missing_fields(item)
        title = item.get("title") if isinstance(item, dict) else None
        entry_type = item.get("type") if isinstance(item, dict) else None
        if missing:
            result["errors"].append({
                "type": entry_type,
                "title": title,
                "error": f"Missing required field(s): {', '.join(missing)}",
            })
            _report(on_progress, index, total, title, "error")
            continue

        if skip_duplicates and title in existing_titles:
            result["skipped"].append({"type": entry_type, "title": title, "reason": "Duplicate title"})
            _report(on_progress, index, total, title, "skipped")
            continue

        entry_data = {k: v for k, v in item.items() if k not in ("_autoLink", "_tempId")}
        links = resolve_auto_link(item.get("_autoLink") or {}, house_id_map, person_id_map)
        entry_data.update(links)

        try:
            entry_id = create(store, entry_data, user_id=user_id)
            if "houseId" in links:
                genealogy.update_house(store, links["houseId"], {"codexEntryId": entry_id}, user_id=user_id)
            if "personId" in links:
                genealogy.update_person(store, links["personId"], {"codexEntryId": entry_id}, user_id=user_id)
        except Exception as e:
            logger.error(f"Failed to import codex entry '{title}': {e}")
            result["errors"].append({"type": entry_type, "title": title, "error": str(e)})
            _report(on_progress, index, total, title, "error")
            continue

        result["created"].append({"title": title, "id": entry_id, "type": entry_type})
        if skip_duplicates:
            existing_titles.add(title)
        _report(on_progress, index, total, title, "success")

    return result


# ============================================================================
# Enhancements
# ============================================================================

def _find_exact_title(store: DocumentStore, title: str) -> dict[str, Any] | None:
    matches = store.where("codexEntries", "title", title)
    return matches[0] if matches else None


def _apply_enhancement(entry: dict[str, Any], enhancement: dict[str, Any]) -> dict[str, Any]:
    content = entry.get("content") or ""

    prepend = enhancement.get("prependSection")
    if prepend:
        block = f"## {prepend['heading']}\n\n{prepend['content']}"
        # after the first paragraph
        split_at = content.find("\n\n")
        if split_at > 0:
            content = f"{content[:split_at]}\n\n{block}{content[split_at:]}"
        else:
            content = f"{content}\n\n{block}"

    append = enhancement.get("appendSection")
    if append:
        content = f"{content}\n\n## {append['heading']}\n\n{append['content']}"

    sections = list(entry.get("sections") or [])
    if enhancement.get("addToSections"):
        sections.append(enhancement["addToSections"])
        sections.sort(key=lambda s: s.get("order") or 0)

    tags = list(entry.get("tags") or [])
    for tag in enhancement.get("addTags") or []:
        if tag not in tags:
            tags.append(tag)

    return {"content": content, "sections": sections, "tags": tags}


def enhance_codex_entries(
    store: DocumentStore,
    enhancements: list[dict[str, Any]],
    dry_run: bool = False,
    on_progress: ProgressFn | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    """
    Add sections and tags to existing entries found by exact title.

    An enhancement whose heading already appears in the entry is skipped, so
    re-running the same enhancements changes nothing.

    Returns:
        {enhanced, notFound, errors, skipped}
    """
    results: dict[str, list[Any]] = {"enhanced": [], "notFound": [], "errors": [], "skipped": []}

    for index, enhancement in enumerate(enhancements):
        if not isinstance(enhancement, dict):
            results["errors"].append({"title": None, "error": f"codexEnhancements[{index}] must be an object"})
            continue
        target = enhancement.get("targetTitle")
        if target is not None and not isinstance(target, str):
            results["errors"].append({"title": None, "error": f"codexEnhancements[{index}] targetTitle must be a string"})
            continue
        _report(on_progress, index, len(enhancements), target, "processing")

        entry = _find_exact_title(store, target) if target else None
        if not entry:
            results["notFound"].append(target)
            continue

        section = enhancement.get("appendSection") or enhancement.get("prependSection") or {}
        heading = section.get("heading") if isinstance(section, dict) else None
        if heading and f"## {heading}" in (entry.get("content") or ""):
            results["skipped"].append({"title": target, "reason": f'Section "{heading}" already exists'})
            continue

        try:
            updates = _apply_enhancement(entry, enhancement)
            if dry_run:
                results["enhanced"].append({"title": target, "id": entry["id"], "dryRun": True})
                continue
            codex_service.update_entry(store, entry["id"], updates, user_id=user_id)
        except Exception as e:
            logger.error(f"Failed to enhance '{target}': {e}")
            results["errors"].append({"title": target, "error": str(e)})
            continue
        results["enhanced"].append({"title": target, "id": entry["id"], "section": heading})

    logger.info(
        f"Enhancements: {len(results['enhanced'])} applied, {len(results['skipped'])} skipped, "
        f"{len(results['notFound'])} not found"
    )
    return results


def preview_enhancements(store: DocumentStore, enhancements: list[dict[str, Any]]) -> dict[str, Any]:
    return enhance_codex_entries(store, enhancements, dry_run=True)


# ============================================================================
# Maintenance
# ============================================================================

def clear_codex(store: DocumentStore, confirm: bool = False) -> bool:
    """Delete every codex entry and link. Does nothing unless confirm is True."""
    if not confirm:
        return False
    count = store.count("codexEntries")
    store.clear("codexEntries")
    store.clear("codexLinks")
    logger.warning(f"Cleared codex: {count} entries removed from dataset {store.dataset_id}")
    return True


def format_import_summary(results: dict[str, Any]) -> str:
    lines = ["CODEX IMPORT SUMMARY"]
    total = 0
    for category in CODEX_CATEGORIES:
        created = len(results.get(category) or [])
        total += created
        if created:
            lines.append(f"  {category}: {created}")
    lines.append(f"Total imported: {total}")
    lines.append(f"Skipped: {len(results.get('skipped') or [])}")
    lines.append(f"Errors: {len(results.get('errors') or [])}")
    for error in results.get("errors") or []:
        lines.append(f"  - {error.get('title')}: {error.get('error')}")
    return "\n".join(lines)
