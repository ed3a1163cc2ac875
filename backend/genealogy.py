"""
People, houses and relationships.

All write operations persist locally and then mirror to the cloud when a
user id is supplied.
"""

import logging
import sqlite3
from datetime import date, datetime, timezone
from itertools import combinations
from typing import Any

import codex_service
from cloud import sync_add, sync_delete, sync_update
from database import COLLECTIONS, GENEALOGY_COLLECTIONS, DocumentStore
from errors import NotFoundError
from gedcom_utils import calculate_person_similarity, find_potential_duplicates, person_summary

logger = logging.getLogger("lineageweaver.genealogy")

GENDERS = ("male", "female", "other")
LEGITIMACY_STATUSES = ("legitimate", "bastard", "adopted", "unknown")
RELATIONSHIP_TYPES = ("parent", "parent-child", "spouse", "adopted-parent", "foster-parent", "mentor", "named-after")
HOUSE_TYPES = ("main", "cadet")

CEREMONY_MIN_AGE = 18


def _require(store: DocumentStore, collection: str, record_id: int) -> dict[str, Any]:
    record = store.get(collection, record_id)
    if record is None:
        raise NotFoundError(collection, record_id)
    return record


# ============================================================================
# People
# ============================================================================

def add_person(store: DocumentStore, person_data: dict[str, Any], user_id: str | None = None) -> int:
    person_id = store.add("people", person_data)
    logger.info(f"Person added: {person_data.get('firstName')} {person_data.get('lastName')} (id={person_id})")
    sync_add(user_id, store.dataset_id, "people", person_id, person_data)
    return person_id


def get_person(store: DocumentStore, person_id: int) -> dict[str, Any] | None:
    return store.get("people", person_id)


def require_person(store: DocumentStore, person_id: int) -> dict[str, Any]:
    return _require(store, "people", person_id)


def get_all_people(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("people")


def get_people_by_house(store: DocumentStore, house_id: int) -> list[dict[str, Any]]:
    return store.where("people", "houseId", house_id)


def update_person(store: DocumentStore, person_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    result = store.update("people", person_id, updates)
    if result:
        sync_update(user_id, store.dataset_id, "people", person_id, updates)
    return result


def delete_person(store: DocumentStore, person_id: int, user_id: str | None = None) -> list[int]:
    """
    Delete a person and every relationship they appear in.

    Returns:
        Ids of the relationships removed alongside the person
    """
    relationship_ids = [rel["id"] for rel in get_relationships_for_person(store, person_id)]
    for rel_id in relationship_ids:
        delete_relationship(store, rel_id, user_id=user_id)
    store.delete("people", person_id)
    sync_delete(user_id, store.dataset_id, "people", person_id)
    logger.info(f"Person deleted: {person_id} ({len(relationship_ids)} relationships removed)")
    return relationship_ids


# ============================================================================
# Houses
# ============================================================================

def add_house(
    store: DocumentStore,
    house_data: dict[str, Any],
    user_id: str | None = None,
    skip_codex_creation: bool = False,
) -> int:
    """
    Add a house and, unless skipped, its 'House <name>' codex entry.

    A failure creating the codex entry is logged and does not undo the house.
    """
    house_id = store.add("houses", house_data)
    logger.info(f"House added: {house_data.get('houseName')} (id={house_id})")
    sync_add(user_id, store.dataset_id, "houses", house_id, house_data)

    if not skip_codex_creation:
        house_type = house_data.get("houseType") or "main"
        try:
            entry_id = codex_service.create_entry(store, {
                "type": "house",
                "title": f"House {house_data.get('houseName')}",
                "subtitle": "Cadet Branch" if house_type == "cadet" else "Noble House",
                "content": house_data.get("notes") or "",
                "category": house_type,
                "tags": ["house", house_type],
                "houseId": house_id,
            }, user_id=user_id)
            update_house(store, house_id, {"codexEntryId": entry_id}, user_id=user_id)
        except (sqlite3.Error, ValueError) as e:
            logger.warning(f"Could not auto-create codex entry for house {house_id}: {e}")

    return house_id


def get_house(store: DocumentStore, house_id: int) -> dict[str, Any] | None:
    return store.get("houses", house_id)


def require_house(store: DocumentStore, house_id: int) -> dict[str, Any]:
    return _require(store, "houses", house_id)


def get_all_houses(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("houses")


def get_cadet_houses(store: DocumentStore, parent_house_id: int) -> list[dict[str, Any]]:
    return store.where("houses", "parentHouseId", parent_house_id)


def update_house(store: DocumentStore, house_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    result = store.update("houses", house_id, updates)
    if result:
        sync_update(user_id, store.dataset_id, "houses", house_id, updates)
    return result


def delete_house(
    store: DocumentStore,
    house_id: int,
    user_id: str | None = None,
    skip_codex_deletion: bool = False,
) -> None:
    """Delete a house, cascading to its codex entry unless skipped."""
    if not skip_codex_deletion:
        entry = codex_service.get_entry_by_house_id(store, house_id)
        if entry:
            codex_service.delete_entry(store, entry["id"], user_id=user_id)
            logger.info(f"Cascade deleted codex entry {entry['id']} for house {house_id}")

    store.delete("houses", house_id)
    sync_delete(user_id, store.dataset_id, "houses", house_id)
    logger.info(f"House deleted: {house_id}")


# ============================================================================
# Relationships
# ============================================================================

def add_relationship(store: DocumentStore, relationship_data: dict[str, Any], user_id: str | None = None) -> int:
    rel_id = store.add("relationships", relationship_data)
    sync_add(user_id, store.dataset_id, "relationships", rel_id, relationship_data)
    return rel_id


def get_relationships_for_person(store: DocumentStore, person_id: int) -> list[dict[str, Any]]:
    return store.filter(
        "relationships",
        lambda rel: rel.get("person1Id") == person_id or rel.get("person2Id") == person_id,
    )


def get_all_relationships(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("relationships")


def update_relationship(store: DocumentStore, rel_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    result = store.update("relationships", rel_id, updates)
    if result:
        sync_update(user_id, store.dataset_id, "relationships", rel_id, updates)
    return result


def delete_relationship(store: DocumentStore, rel_id: int, user_id: str | None = None) -> None:
    store.delete("relationships", rel_id)
    sync_delete(user_id, store.dataset_id, "relationships", rel_id)


def get_named_after_relationships(store: DocumentStore, person_id: int) -> dict[str, list[dict[str, Any]]]:
    """People this person was named after, and people named after them."""
    named_after = store.filter(
        "relationships",
        lambda r: r.get("relationshipType") == "named-after" and r.get("person1Id") == person_id,
    )
    namesakes = store.filter(
        "relationships",
        lambda r: r.get("relationshipType") == "named-after" and r.get("person2Id") == person_id,
    )
    return {"namedAfter": named_after, "namesakes": namesakes}


# ============================================================================
# Cadet house ceremony
# ============================================================================

def calculate_age(date_of_birth: str | None, today: date | None = None) -> int | None:
    """Age in whole years for an ISO date of birth ('1250-03-12' or '1250')."""
    if not date_of_birth:
        return None
    parts = str(date_of_birth).split("-")
    try:
        year = int(parts[0])
        month = int(parts[1]) if len(parts) > 1 else 1
        day = int(parts[2]) if len(parts) > 2 else 1
    except ValueError:
        return None

    today = today or date.today()
    age = today.year - year
    if (today.month, today.day) < (month, day):
        age -= 1
    return age


def is_eligible_for_ceremony(person: dict[str, Any], today: date | None = None) -> dict[str, Any]:
    """
    Whether a person may found a cadet house.

    Tier 1 is a legitimate adult of a noble house; tier 2 is an adult bastard
    who has neither founded a house nor been legitimized.

    Returns:
        {eligible, tier, reason}
    """
    if not person.get("dateOfBirth"):
        return {"eligible": False, "tier": None, "reason": "No birth date recorded"}

    age = calculate_age(person["dateOfBirth"], today)
    if age is None:
        return {"eligible": False, "tier": None, "reason": "Unreadable birth date"}
    if age < CEREMONY_MIN_AGE:
        return {"eligible": False, "tier": None, "reason": f"Must be at least {CEREMONY_MIN_AGE} (currently {age})"}

    status = person.get("legitimacyStatus")
    if status == "bastard":
        if person.get("bastardStatus") == "founded":
            return {"eligible": False, "tier": None, "reason": "Already founded a cadet house"}
        if person.get("bastardStatus") == "legitimized":
            return {"eligible": False, "tier": None, "reason": "Has been legitimized"}
        return {"eligible": True, "tier": 2, "reason": None}

    if status == "legitimate":
        if not person.get("houseId"):
            return {"eligible": False, "tier": None, "reason": "Must belong to a noble house"}
        return {"eligible": True, "tier": 1, "reason": None}

    return {"eligible": False, "tier": None, "reason": f"Cannot found house with status: {status}"}


def found_cadet_house(store: DocumentStore, ceremony_data: dict[str, Any], user_id: str | None = None) -> dict[str, Any]:
    """
    Create a cadet house and move its founder into it.

    Bastard founders (tier 2) create a 'bastard-elevation' branch; the founder
    becomes legitimate head of the new house either way.

    Returns:
        {house, founder}
    """
    founder = require_person(store, ceremony_data["founderId"])
    parent_house = require_house(store, ceremony_data["parentHouseId"])

    is_bastard_founded = (
        ceremony_data.get("cadetTier") == 2
        or ceremony_data.get("foundingType") == "bastard-elevation"
        or founder.get("legitimacyStatus") == "bastard"
    )
    tier = 2 if is_bastard_founded else 1
    parent_name = parent_house.get("houseName") or ""
    description = (
        f"Bastard-elevated branch of {parent_name}" if is_bastard_founded
        else f"Cadet branch of {parent_name}"
    )
    house_name = ceremony_data["houseName"]

    house_id = add_house(store, {
        "houseName": house_name,
        "parentHouseId": parent_house["id"],
        "houseType": "cadet",
        "cadetTier": tier,
        "foundingType": "bastard-elevation" if is_bastard_founded else "noble",
        "foundedBy": founder["id"],
        "foundedDate": ceremony_data.get("ceremonyDate"),
        "swornTo": parent_house["id"],
        "namePrefix": parent_house.get("namePrefix") or parent_name[:4],
        "motto": ceremony_data.get("motto"),
        "colorCode": ceremony_data.get("colorCode") or parent_house.get("colorCode"),
        "notes": f"{description}, founded by {founder.get('firstName')} {founder.get('lastName')}",
    }, user_id=user_id)

    update_person(store, founder["id"], {
        "houseId": house_id,
        "lastName": house_name,
        "bastardStatus": "founded" if is_bastard_founded else None,
        "legitimacyStatus": "legitimate",
    }, user_id=user_id)

    logger.info(f"Founded tier {tier} cadet house: {house_name}")
    return {"house": get_house(store, house_id), "founder": get_person(store, founder["id"])}


# ============================================================================
# Bulk deletion
# ============================================================================

def delete_all_data(store: DocumentStore) -> None:
    """Clear every collection in the dataset, codex included."""
    for collection in COLLECTIONS:
        store.clear(collection)
    logger.info(f"All data deleted for dataset {store.dataset_id}")


def delete_genealogy_data(store: DocumentStore) -> None:
    """Clear people, houses, relationships and acknowledged duplicates; keep the codex."""
    for collection in GENEALOGY_COLLECTIONS:
        store.clear(collection)
    logger.info(f"Genealogy data deleted for dataset {store.dataset_id} (codex preserved)")


# ============================================================================
# Acknowledged duplicates (namesakes)
# ============================================================================

def _pair_matches(record: dict[str, Any], person1_id: int, person2_id: int) -> bool:
    pair = (record.get("person1Id"), record.get("person2Id"))
    return pair in ((person1_id, person2_id), (person2_id, person1_id))


def is_acknowledged_duplicate(store: DocumentStore, person1_id: int, person2_id: int) -> bool:
    """True if the pair was marked as namesakes, in either order."""
    return bool(store.filter("acknowledgedDuplicates", lambda r: _pair_matches(r, person1_id, person2_id)))


def get_all_acknowledged_duplicates(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("acknowledgedDuplicates")


def acknowledge_duplicate(store: DocumentStore, person1_id: int, person2_id: int) -> int | None:
    """Record two people as namesakes. Returns None if already acknowledged."""
    if is_acknowledged_duplicate(store, person1_id, person2_id):
        logger.info(f"Duplicate already acknowledged: {person1_id}/{person2_id}")
        return None
    return store.add("acknowledgedDuplicates", {
        "person1Id": int(person1_id),
        "person2Id": int(person2_id),
        "acknowledgedAt": datetime.now(timezone.utc).isoformat(),
    })


def remove_acknowledged_duplicate(store: DocumentStore, person1_id: int, person2_id: int) -> None:
    for record in store.filter("acknowledgedDuplicates", lambda r: _pair_matches(r, person1_id, person2_id)):
        store.delete("acknowledgedDuplicates", record["id"])


def find_potential_duplicate_people(store: DocumentStore, threshold: float = 0.80) -> list[dict[str, Any]]:
    """
    Score every pair of people and return those at or above threshold.

    Pairs acknowledged as namesakes are skipped.

    Returns:
        list of {person1, person2, similarity, percentage}, best first
    """
    people = store.all("people")
    acknowledged = {
        frozenset((r.get("person1Id"), r.get("person2Id")))
        for r in store.all("acknowledgedDuplicates")
    }
    summaries = {p["id"]: person_summary(p) for p in people}
    matches = []

    for first, second in combinations(people, 2):
        if frozenset((first["id"], second["id"])) in acknowledged:
            continue
        score = calculate_person_similarity(summaries[first["id"]], summaries[second["id"]])
        if score >= threshold:
            matches.append({
                "person1": first,
                "person2": second,
                "similarity": score,
                "percentage": int(score * 100),
            })

    matches.sort(key=lambda m: m["similarity"], reverse=True)
    return matches


def find_duplicates_of(store: DocumentStore, person_data: dict[str, Any], threshold: float = 0.60) -> list[dict[str, Any]]:
    """Stored people that look like the same person as an unsaved record."""
    exclude = {person_data["id"]} if person_data.get("id") else None
    return find_potential_duplicates(store.all("people"), person_data, threshold=threshold, exclude_ids=exclude)
