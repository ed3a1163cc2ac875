"""
Data migrations.

Backfills codex entries for houses and dignities created before every
record carried one, then cross-links the codex entries of people, houses
and dignities. Every migration is idempotent and safe to re-run.
"""

import logging
import sqlite3
from typing import Any

import codex_service
import dignity_service
from cloud import sync_update
from database import DocumentStore

logger = logging.getLogger("lineageweaver.migrations")

CROSS_LINK_TYPES = ("member-of", "holds-title", "house-holds")


def _empty_results(total: int) -> dict[str, Any]:
    return {"total": total, "migrated": 0, "skipped": 0, "errors": []}


# ============================================================================
# Codex backfill
# ============================================================================

def migrate_houses_to_codex(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    """Give every house without a codexEntryId a codex entry, or link an existing one."""
    houses = store.all("houses")
    results = _empty_results(len(houses))

    for house in houses:
        if house.get("codexEntryId"):
            results["skipped"] += 1
            continue
        try:
            existing = codex_service.get_entry_by_house_id(store, house["id"])
            if existing:
                codex_entry_id = existing["id"]
                results["skipped"] += 1
            else:
                house_type = house.get("houseType") or "main"
                codex_entry_id = codex_service.create_entry(store, {
                    "type": "house",
                    "title": f"House {house.get('houseName')}",
                    "subtitle": "Cadet Branch" if house_type == "cadet" else "Noble House",
                    "content": house.get("notes") or "",
                    "category": house_type,
                    "tags": ["house", house_type],
                    "houseId": house["id"],
                }, user_id=user_id)
                results["migrated"] += 1
            store.update("houses", house["id"], {"codexEntryId": codex_entry_id})
            sync_update(user_id, store.dataset_id, "houses", house["id"], {"codexEntryId": codex_entry_id})
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to migrate house {house.get('houseName')}: {e}")
            results["errors"].append({"houseId": house["id"], "houseName": house.get("houseName"), "error": str(e)})

    logger.info(f"House codex migration: {results['migrated']} migrated, {results['skipped']} skipped")
    return results


def migrate_dignities_to_codex(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    """Give every dignity without a codexEntryId a codex entry, or link an existing one."""
    dignities = store.all("dignities")
    results = _empty_results(len(dignities))

    for dignity in dignities:
        if dignity.get("codexEntryId"):
            results["skipped"] += 1
            continue
        try:
            existing = codex_service.get_entry_by_dignity_id(store, dignity["id"])
            if existing:
                codex_entry_id = existing["id"]
                results["skipped"] += 1
            else:
                dignity_class = dignity.get("dignityClass") or "driht"
                class_name = dignity_service.DIGNITY_CLASSES.get(dignity_class, {}).get("name", dignity_class)
                codex_entry_id = codex_service.create_entry(store, {
                    "type": "mysteria",
                    "title": dignity.get("name"),
                    "subtitle": f"{class_name} Dignity" if dignity.get("dignityRank") else "Dignity",
                    "content": dignity.get("notes") or "",
                    "category": dignity_class,
                    "tags": [t for t in ("dignity", dignity_class, dignity.get("dignityRank")) if t],
                    "dignityId": dignity["id"],
                }, user_id=user_id)
                results["migrated"] += 1
            store.update("dignities", dignity["id"], {"codexEntryId": codex_entry_id})
            sync_update(user_id, store.dataset_id, "dignities", dignity["id"], {"codexEntryId": codex_entry_id})
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to migrate dignity {dignity.get('name')}: {e}")
            results["errors"].append({"dignityId": dignity["id"], "dignityName": dignity.get("name"), "error": str(e)})

    logger.info(f"Dignity codex migration: {results['migrated']} migrated, {results['skipped']} skipped")
    return results


# ============================================================================
# Cross-linking
# ============================================================================

def _link_entries(
    store: DocumentStore,
    source_id: int | None,
    target_id: int | None,
    link_type: str,
    label: str,
    user_id: str | None,
) -> bool:
    """Create a bidirectional link unless one already runs source → target."""
    if not source_id or not target_id or source_id == target_id:
        return False
    if any(link.get("targetId") == target_id for link in codex_service.get_outgoing_links(store, source_id)):
        return False
    codex_service.create_link(store, {
        "sourceId": source_id,
        "targetId": target_id,
        "type": link_type,
        "label": label,
        "bidirectional": True,
    }, user_id=user_id)
    return True


def _cross_link(store, records, resolve_pair, link_type, label, user_id) -> dict[str, Any]:
    results = {"total": len(records), "linked": 0, "skipped": 0, "errors": []}
    for record in records:
        try:
            pair = resolve_pair(record)
            if pair and _link_entries(store, pair[0], pair[1], link_type, label, user_id):
                results["linked"] += 1
            else:
                results["skipped"] += 1
        except (sqlite3.Error, ValueError) as e:
            results["errors"].append({"recordId": record.get("id"), "linkType": link_type, "error": str(e)})
    logger.info(f"Cross-linking {link_type}: {results['linked']} linked, {results['skipped']} skipped")
    return results


def _entry_id(entry: dict[str, Any] | None) -> int | None:
    return entry["id"] if entry else None


def migrate_person_house_links(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    def resolve(person):
        if not person.get("houseId"):
            return None
        return (
            _entry_id(codex_service.get_entry_by_person_id(store, person["id"])),
            _entry_id(codex_service.get_entry_by_house_id(store, person["houseId"])),
        )

    return _cross_link(store, store.all("people"), resolve, "member-of", "House Member", user_id)


def migrate_person_dignity_links(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    def resolve(dignity):
        if not dignity.get("currentHolderId"):
            return None
        return (
            _entry_id(codex_service.get_entry_by_person_id(store, dignity["currentHolderId"])),
            _entry_id(codex_service.get_entry_by_dignity_id(store, dignity["id"])),
        )

    return _cross_link(store, store.all("dignities"), resolve, "holds-title", "Current Holder", user_id)


def migrate_house_dignity_links(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    def resolve(dignity):
        if not dignity.get("currentHouseId"):
            return None
        return (
            _entry_id(codex_service.get_entry_by_house_id(store, dignity["currentHouseId"])),
            _entry_id(codex_service.get_entry_by_dignity_id(store, dignity["id"])),
        )

    return _cross_link(store, store.all("dignities"), resolve, "house-holds", "House Title", user_id)


def run_cross_linking_migrations(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    results = {
        "personHouse": migrate_person_house_links(store, user_id),
        "personDignity": migrate_person_dignity_links(store, user_id),
        "houseDignity": migrate_house_dignity_links(store, user_id),
    }
    errors = [e for part in results.values() for e in part["errors"]]
    return {
        **results,
        "totalLinked": sum(part["linked"] for part in results.values()),
        "errors": errors,
        "success": not errors,
    }


# ============================================================================
# Entry points
# ============================================================================

def run_all_migrations(store: DocumentStore, user_id: str | None = None) -> dict[str, Any]:
    """Run the codex backfills and then the cross-linking migrations."""
    houses = migrate_houses_to_codex(store, user_id)
    dignities = migrate_dignities_to_codex(store, user_id)
    cross_links = run_cross_linking_migrations(store, user_id)
    errors = houses["errors"] + dignities["errors"] + cross_links["errors"]

    logger.info(
        f"Migrations complete: {houses['migrated']} houses, {dignities['migrated']} dignities, "
        f"{cross_links['totalLinked']} cross-links, {len(errors)} errors"
    )
    return {
        "houses": houses,
        "dignities": dignities,
        "crossLinks": cross_links,
        "success": not errors,
        "errors": errors,
    }


def get_migration_status(store: DocumentStore) -> dict[str, Any]:
    """How many records each migration would still touch."""
    houses = store.all("houses")
    dignities = store.all("dignities")
    people = store.all("people")
    links = store.all("codexLinks")

    houses_without = sum(1 for h in houses if not h.get("codexEntryId"))
    dignities_without = sum(1 for d in dignities if not d.get("codexEntryId"))

    potential = {
        "personHouse": sum(1 for p in people if p.get("houseId")),
        "personDignity": sum(1 for d in dignities if d.get("currentHolderId")),
        "houseDignity": sum(1 for d in dignities if d.get("currentHouseId")),
    }
    existing = {
        name: sum(1 for l in links if l.get("type") == link_type)
        for name, link_type in zip(potential, CROSS_LINK_TYPES)
    }
    total_potential = sum(potential.values())
    total_existing = sum(existing.values())

    return {
        "houses": {
            "total": len(houses),
            "withCodex": len(houses) - houses_without,
            "needsMigration": houses_without,
        },
        "dignities": {
            "total": len(dignities),
            "withCodex": len(dignities) - dignities_without,
            "needsMigration": dignities_without,
        },
        "crossLinks": {
            **{name: {"potential": potential[name], "existing": existing[name]} for name in potential},
            "total": {
                "potential": total_potential,
                "existing": total_existing,
                "needsMigration": total_potential > total_existing,
            },
        },
        "needsMigration": houses_without > 0 or dignities_without > 0 or total_potential > total_existing,
    }
