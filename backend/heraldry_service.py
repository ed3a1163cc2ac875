"""
Heraldry records and their links to houses, people, locations and events.

A primary link to a house or person also stores the heraldry id on that
record so the arms can be looked up without scanning links.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from cloud import sync_add, sync_delete, sync_update
from database import DocumentStore
from errors import NotFoundError

logger = logging.getLogger("lineageweaver.heraldry")

CATEGORIES = ("noble", "ecclesiastical", "civic", "guild", "personal", "fantasy")
ENTITY_TYPES = ("house", "person", "location", "event")
LINK_TYPES = ("primary", "quartered", "impaled", "banner", "seal")
DERIVATION_TYPES = ("cadency", "marriage", "grant", "adoption")

# entity types whose records carry a heraldryId shortcut
_ENTITY_COLLECTIONS = {"house": "houses", "person": "people"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Heraldry CRUD
# ============================================================================

def create_heraldry(store: DocumentStore, heraldry_data: dict[str, Any], user_id: str | None = None) -> int:
    timestamp = now_iso()
    record = {
        "name": heraldry_data.get("name") or "Untitled Arms",
        "description": heraldry_data.get("description"),
        "blazon": heraldry_data.get("blazon"),
        "shieldType": heraldry_data.get("shieldType") or "heater",
        "composition": heraldry_data.get("composition"),
        "category": heraldry_data.get("category") or "noble",
        "tags": heraldry_data.get("tags") or [],
        "parentHeraldryId": heraldry_data.get("parentHeraldryId"),
        "derivationType": heraldry_data.get("derivationType"),
        "isTemplate": bool(heraldry_data.get("isTemplate", False)),
        "codexEntryId": heraldry_data.get("codexEntryId"),
        "metadata": heraldry_data.get("metadata"),
        "created": timestamp,
        "updated": timestamp,
    }
    heraldry_id = store.add("heraldry", record)
    logger.info(f"Heraldry created: {record['name']} (id={heraldry_id})")
    sync_add(user_id, store.dataset_id, "heraldry", heraldry_id, record)
    return heraldry_id


def get_heraldry(store: DocumentStore, heraldry_id: int) -> dict[str, Any] | None:
    return store.get("heraldry", heraldry_id)


def require_heraldry(store: DocumentStore, heraldry_id: int) -> dict[str, Any]:
    heraldry = store.get("heraldry", heraldry_id)
    if heraldry is None:
        raise NotFoundError("heraldry", heraldry_id)
    return heraldry


def get_all_heraldry(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("heraldry")


def update_heraldry(store: DocumentStore, heraldry_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    changes = {**updates, "updated": now_iso()}
    result = store.update("heraldry", heraldry_id, changes)
    if result:
        sync_update(user_id, store.dataset_id, "heraldry", heraldry_id, changes)
    return result


def delete_heraldry(store: DocumentStore, heraldry_id: int, user_id: str | None = None) -> None:
    """Delete heraldry and its links, clearing any heraldryId shortcuts."""
    for link in store.where("heraldryLinks", "heraldryId", heraldry_id):
        unlink_heraldry(store, link["id"], user_id=user_id)
    store.delete("heraldry", heraldry_id)
    sync_delete(user_id, store.dataset_id, "heraldry", heraldry_id)
    logger.info(f"Heraldry deleted: {heraldry_id}")


# ============================================================================
# Links
# ============================================================================

def _set_entity_heraldry(
    store: DocumentStore,
    entity_type: str,
    entity_id: int,
    heraldry_id: int | None,
    user_id: str | None,
) -> None:
    collection = _ENTITY_COLLECTIONS.get(entity_type)
    if collection is None:
        return
    if store.update(collection, entity_id, {"heraldryId": heraldry_id}):
        sync_update(user_id, store.dataset_id, collection, entity_id, {"heraldryId": heraldry_id})


def link_heraldry_to_entity(store: DocumentStore, link_data: dict[str, Any], user_id: str | None = None) -> int:
    """
    Link heraldry to an entity.

    Args:
        link_data: {heraldryId, entityType, entityId, linkType, since, until}
            linkType defaults to 'primary'

    Returns:
        The new link id
    """
    entity_type = link_data.get("entityType")
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Invalid heraldry entity type: {entity_type}")

    link = {
        "heraldryId": link_data.get("heraldryId"),
        "entityType": entity_type,
        "entityId": link_data.get("entityId"),
        "linkType": link_data.get("linkType") or "primary",
        "since": link_data.get("since"),
        "until": link_data.get("until"),
        "created": now_iso(),
    }
    link_id = store.add("heraldryLinks", link)
    sync_add(user_id, store.dataset_id, "heraldryLinks", link_id, link)

    if link["linkType"] == "primary":
        _set_entity_heraldry(store, entity_type, link["entityId"], link["heraldryId"], user_id)

    logger.info(f"Heraldry {link['heraldryId']} linked to {entity_type} {link['entityId']} ({link['linkType']})")
    return link_id


def _primary_links(store: DocumentStore, entity_type: str, entity_id: int) -> list[dict[str, Any]]:
    return store.filter(
        "heraldryLinks",
        lambda l: l.get("entityType") == entity_type and l.get("entityId") == entity_id and l.get("linkType") == "primary",
    )


def unlink_heraldry(store: DocumentStore, link_id: int, user_id: str | None = None) -> None:
    """
    Remove a heraldry link.

    When the entity's heraldryId points at the unlinked arms it falls back to
    the most recent remaining primary link, or None when there is none.
    """
    link = store.get("heraldryLinks", link_id)
    store.delete("heraldryLinks", link_id)
    sync_delete(user_id, store.dataset_id, "heraldryLinks", link_id)
    if not link or link.get("linkType") != "primary":
        return

    entity_type, entity_id = link.get("entityType"), link.get("entityId")
    collection = _ENTITY_COLLECTIONS.get(entity_type)
    entity = store.get(collection, entity_id) if collection else None
    if not entity or entity.get("heraldryId") != link.get("heraldryId"):
        return
    remaining = _primary_links(store, entity_type, entity_id)
    fallback = remaining[-1]["heraldryId"] if remaining else None
    _set_entity_heraldry(store, entity_type, entity_id, fallback, user_id)


def get_heraldry_links(store: DocumentStore, heraldry_id: int) -> list[dict[str, Any]]:
    return store.where("heraldryLinks", "heraldryId", heraldry_id)


def get_heraldry_for_entity(store: DocumentStore, entity_type: str, entity_id: int) -> list[dict[str, Any]]:
    """Heraldry linked to an entity, each annotated with its link details."""
    results = []
    for link in store.filter(
        "heraldryLinks",
        lambda l: l.get("entityType") == entity_type and l.get("entityId") == entity_id,
    ):
        heraldry = get_heraldry(store, link.get("heraldryId"))
        if heraldry:
            results.append({
                **heraldry,
                "linkId": link["id"],
                "linkType": link.get("linkType"),
                "since": link.get("since"),
                "until": link.get("until"),
            })
    return results


# ============================================================================
# Queries
# ============================================================================

def get_heraldry_by_category(store: DocumentStore, category: str) -> list[dict[str, Any]]:
    return store.where("heraldry", "category", category)


def search_heraldry(store: DocumentStore, search_term: str) -> list[dict[str, Any]]:
    term = search_term.lower()

    def matches(heraldry: dict[str, Any]) -> bool:
        for field in ("name", "description", "blazon"):
            if term in (heraldry.get(field) or "").lower():
                return True
        return any(term in tag.lower() for tag in heraldry.get("tags") or [])

    return store.filter("heraldry", matches)


def get_heraldry_templates(store: DocumentStore) -> list[dict[str, Any]]:
    return store.filter("heraldry", lambda h: bool(h.get("isTemplate")))


def get_heraldry_statistics(store: DocumentStore) -> dict[str, Any]:
    records = store.all("heraldry")
    links = store.all("heraldryLinks")

    by_category: dict[str, int] = {}
    by_shield_type: dict[str, int] = {}
    for heraldry in records:
        category = heraldry.get("category") or "uncategorized"
        by_category[category] = by_category.get(category, 0) + 1
        shield = heraldry.get("shieldType") or "heater"
        by_shield_type[shield] = by_shield_type.get(shield, 0) + 1

    return {
        "total": len(records),
        "byCategory": by_category,
        "byShieldType": by_shield_type,
        "linkedHouses": len({l.get("entityId") for l in links if l.get("entityType") == "house"}),
        "linkedPeople": len({l.get("entityId") for l in links if l.get("entityType") == "person"}),
        "templates": sum(1 for h in records if h.get("isTemplate")),
        "withBlazon": sum(1 for h in records if h.get("blazon")),
    }


# ============================================================================
# Personal arms
# ============================================================================

def get_personal_arms(store: DocumentStore, person_id: int) -> dict[str, Any] | None:
    """A person's primary arms, via the heraldryId shortcut or the links."""
    person = store.get("people", person_id)
    if person and person.get("heraldryId"):
        heraldry = get_heraldry(store, person["heraldryId"])
        if heraldry:
            return heraldry

    for heraldry in get_heraldry_for_entity(store, "person", person_id):
        if heraldry.get("linkType") == "primary":
            return heraldry
    return None


def create_personal_arms_from_house(
    store: DocumentStore,
    person_id: int,
    house_heraldry_id: int,
    birth_position: int,
    name: str | None = None,
    user_id: str | None = None,
) -> int:
    """
    Derive personal arms from a house's arms with a cadency mark and link
    them to the person as primary arms.
    """
    house_heraldry = require_heraldry(store, house_heraldry_id)
    person = store.get("people", person_id)
    if person is None:
        raise NotFoundError("people", person_id)

    composition = dict(house_heraldry.get("composition") or {})
    composition["cadency"] = {
        "type": "triangles",
        "count": birth_position,
        "position": "chief",
        "tincture": "sable",
    }

    heraldry_id = create_heraldry(store, {
        "name": name or f"Arms of {person.get('firstName')} {person.get('lastName')}",
        "description": f"Personal arms derived from house arms with son number {birth_position} cadency",
        "blazon": house_heraldry.get("blazon"),
        "shieldType": house_heraldry.get("shieldType"),
        "composition": composition,
        "category": "personal",
        "tags": ["personal arms", "cadency", person.get("lastName") or ""],
        "parentHeraldryId": house_heraldry_id,
        "derivationType": "cadency",
        "metadata": {
            "personId": person_id,
            "birthPosition": birth_position,
            "derivedFrom": house_heraldry.get("name"),
        },
    }, user_id=user_id)

    link_heraldry_to_entity(store, {
        "heraldryId": heraldry_id,
        "entityType": "person",
        "entityId": person_id,
        "linkType": "primary",
    }, user_id=user_id)
    return heraldry_id
