"""
Titles and dignities.

A dignity is a title, office, rank or honour held by a person or associated
with a house. Tenures record who held it and when; dignity links attach it to
houses, locations, events or factions.

A dignity's nature decides how it behaves:
- territorial: hereditary land titles, male-primogeniture unless set otherwise
- office: appointed positions that never pass to heirs; grant is tracked
- personal-honour: dies with its holder; grant is tracked
- courtesy: derived from someone else's dignity; never inherited
"""

import logging
from datetime import datetime, timezone
from typing import Any

from cloud import sync_add, sync_delete, sync_update
from database import DocumentStore
from errors import NotFoundError

logger = logging.getLogger("lineageweaver.dignities")

# ============================================================================
# Reference data
# ============================================================================

DIGNITY_CLASSES = {
    "driht": {"id": "driht", "name": "Driht", "description": "Lordship by right"},
    "ward": {"id": "ward", "name": "Ward", "description": "Custodial authority in trust"},
    "sir": {"id": "sir", "name": "Sir", "description": "Knightly honour of service"},
    "crown": {"id": "crown", "name": "Crown", "description": "Sovereign authority"},
    "other": {"id": "other", "name": "Other", "description": "Religious, guild or foreign dignities"},
}

DIGNITY_RANKS = {
    "driht": {
        "drihten": {"id": "drihten", "name": "Drihten", "description": "Paramount lord of a house or region", "order": 1},
        "drithen": {"id": "drithen", "name": "Drithen", "description": "Great lord by inheritance or grant", "order": 2},
        "drith": {"id": "drith", "name": "Drith", "description": "Full lord over persons and lands", "order": 3},
        "drithling": {"id": "drithling", "name": "Drithling", "description": "Cadet lord of the blood", "order": 4},
        "drithman": {"id": "drithman", "name": "Drithman", "description": "Lord-in-service", "order": 5},
    },
    "ward": {
        "wardyn": {"id": "wardyn", "name": "Wardyn", "description": "Senior custodian of land", "order": 1},
        "landward": {"id": "landward", "name": "Landward", "description": "Custodial landholder", "order": 2},
        "holdward": {"id": "holdward", "name": "Holdward", "description": "Minor estate custodian", "order": 3},
        "marchward": {"id": "marchward", "name": "Marchward", "description": "Custodian of borderlands", "order": 4},
    },
    "sir": {
        "sir": {"id": "sir", "name": "Sir", "description": "Knightly honour without inherent land", "order": 1},
    },
    "crown": {
        "sovereign": {"id": "sovereign", "name": "Sovereign", "description": "The Crown itself", "order": 1},
        "heir": {"id": "heir", "name": "Heir", "description": "Heir to the Crown", "order": 2},
        "prince": {"id": "prince", "name": "Prince", "description": "Royal blood", "order": 3},
    },
    "other": {
        "custom": {"id": "custom", "name": "Custom", "description": "User-defined rank", "order": 1},
    },
}

DIGNITY_NATURES = {
    "territorial": {"id": "territorial", "name": "Territorial", "hereditary": True, "tracksGrant": False},
    "office": {"id": "office", "name": "Office", "hereditary": False, "tracksGrant": True},
    "personal-honour": {"id": "personal-honour", "name": "Personal Honour", "hereditary": False, "tracksGrant": True},
    "courtesy": {"id": "courtesy", "name": "Courtesy", "hereditary": False, "tracksGrant": False},
}

TENURE_TYPES = {
    "of": "of",
    "in": "in",
    "at": "at",
    "of-house": "of the House of",
    "of-name": "of the Name of",
    "in-fee": "in Fee of",
    "in-wardship": "in Wardship under",
}

FEALTY_TYPES = ("sworn-to", "liege-to", "under-banner")

ACQUISITION_TYPES = ("inheritance", "grant", "conquest", "marriage", "elevation", "election", "usurpation", "restoration")

END_TYPES = ("death", "abdication", "forfeiture", "attainder", "deposition", "succession", "transfer")

SUCCESSION_TYPES = {
    "male-primogeniture": {"name": "Male Primogeniture", "autoCalculate": True},
    "absolute-primogeniture": {"name": "Absolute Primogeniture", "autoCalculate": True},
    "agnatic-seniority": {"name": "Agnatic Seniority", "autoCalculate": True},
    "elective": {"name": "Elective", "autoCalculate": False},
    "appointment": {"name": "Appointment", "autoCalculate": False},
    "conquest": {"name": "Conquest", "autoCalculate": False},
    "custom": {"name": "Custom", "autoCalculate": False},
}

DEFAULT_NATURE = "territorial"
DEFAULT_SUCCESSION_TYPE = "male-primogeniture"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def apply_nature_rules(record: dict[str, Any]) -> dict[str, Any]:
    """
    Force the fields a dignity's nature determines.

    Territorial dignities are hereditary with a succession type; every other
    nature is non-hereditary. Office and personal-honour dignities carry
    grantedById/grantedDate, the others do not.
    """
    nature = record.get("dignityNature") or DEFAULT_NATURE
    if nature not in DIGNITY_NATURES:
        raise ValueError(f"Invalid dignity nature: {nature}")
    rules = DIGNITY_NATURES[nature]

    result = {**record, "dignityNature": nature}
    if rules["hereditary"]:
        result["isHereditary"] = True
        result["successionType"] = record.get("successionType") or DEFAULT_SUCCESSION_TYPE
    else:
        result["isHereditary"] = False
        result["successionType"] = None

    if rules["tracksGrant"]:
        result["grantedById"] = record.get("grantedById")
        result["grantedDate"] = record.get("grantedDate")
    else:
        result.pop("grantedById", None)
        result.pop("grantedDate", None)
    return result


# ============================================================================
# Dignity CRUD
# ============================================================================

def create_dignity(store: DocumentStore, dignity_data: dict[str, Any], user_id: str | None = None) -> int:
    timestamp = now_iso()
    record = {
        "name": dignity_data.get("name") or "Untitled Dignity",
        "shortName": dignity_data.get("shortName"),
        "dignityClass": dignity_data.get("dignityClass") or "driht",
        "dignityRank": dignity_data.get("dignityRank"),
        "dignityNature": dignity_data.get("dignityNature") or DEFAULT_NATURE,
        "tenureType": dignity_data.get("tenureType") or "of",
        "placeName": dignity_data.get("placeName"),
        "seatName": dignity_data.get("seatName"),
        "swornToId": dignity_data.get("swornToId"),
        "fealtyType": dignity_data.get("fealtyType") or "sworn-to",
        "currentHolderId": dignity_data.get("currentHolderId"),
        "currentHouseId": dignity_data.get("currentHouseId"),
        "isVacant": bool(dignity_data.get("isVacant", False)),
        "successionType": dignity_data.get("successionType"),
        "grantedById": dignity_data.get("grantedById"),
        "grantedDate": dignity_data.get("grantedDate"),
        "codexEntryId": dignity_data.get("codexEntryId"),
        "displayPriority": dignity_data.get("displayPriority") or 0,
        "notes": dignity_data.get("notes"),
        "created": timestamp,
        "updated": timestamp,
    }
    record = apply_nature_rules(record)

    dignity_id = store.add("dignities", record)
    logger.info(f"Dignity created: {record['name']} (id={dignity_id}, nature={record['dignityNature']})")
    sync_add(user_id, store.dataset_id, "dignities", dignity_id, record)
    return dignity_id


def get_dignity(store: DocumentStore, dignity_id: int) -> dict[str, Any] | None:
    return store.get("dignities", dignity_id)


def require_dignity(store: DocumentStore, dignity_id: int) -> dict[str, Any]:
    dignity = store.get("dignities", dignity_id)
    if dignity is None:
        raise NotFoundError("dignities", dignity_id)
    return dignity


def get_all_dignities(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("dignities")


def update_dignity(store: DocumentStore, dignity_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    """Update a dignity, re-applying its nature rules to the merged record."""
    existing = store.get("dignities", dignity_id)
    if existing is None:
        return 0

    merged = apply_nature_rules({**existing, **updates})
    changes = {
        key: value for key, value in merged.items()
        if key != "id" and (key in updates or existing.get(key) != value)
    }
    changes["updated"] = now_iso()
    # grant fields dropped by a nature change must be cleared, not merged
    for field in ("grantedById", "grantedDate"):
        if field in existing and field not in merged:
            changes[field] = None

    result = store.update("dignities", dignity_id, changes)
    sync_update(user_id, store.dataset_id, "dignities", dignity_id, changes)
    return result


def delete_dignity(store: DocumentStore, dignity_id: int, user_id: str | None = None) -> None:
    """Delete a dignity with its tenures and links."""
    for tenure in store.where("dignityTenures", "dignityId", dignity_id):
        delete_dignity_tenure(store, tenure["id"], user_id=user_id)
    for link in store.where("dignityLinks", "dignityId", dignity_id):
        unlink_dignity(store, link["id"], user_id=user_id)

    store.delete("dignities", dignity_id)
    sync_delete(user_id, store.dataset_id, "dignities", dignity_id)
    logger.info(f"Dignity deleted: {dignity_id}")


# ============================================================================
# Tenures
# ============================================================================

def create_dignity_tenure(store: DocumentStore, tenure_data: dict[str, Any], user_id: str | None = None) -> int:
    record = {
        "dignityId": tenure_data.get("dignityId"),
        "personId": tenure_data.get("personId"),
        "dateStarted": tenure_data.get("dateStarted"),
        "dateEnded": tenure_data.get("dateEnded"),
        "acquisitionType": tenure_data.get("acquisitionType") or "inheritance",
        "endType": tenure_data.get("endType"),
        "grantedById": tenure_data.get("grantedById"),
        "notes": tenure_data.get("notes"),
        "created": now_iso(),
    }
    tenure_id = store.add("dignityTenures", record)
    sync_add(user_id, store.dataset_id, "dignityTenures", tenure_id, record)
    return tenure_id


def get_tenures_for_dignity(store: DocumentStore, dignity_id: int) -> list[dict[str, Any]]:
    """Tenures oldest first; undated tenures last."""
    tenures = store.where("dignityTenures", "dignityId", dignity_id)
    return sorted(tenures, key=lambda t: (t.get("dateStarted") is None, t.get("dateStarted") or ""))


def get_tenures_for_person(store: DocumentStore, person_id: int) -> list[dict[str, Any]]:
    """Every tenure a person has held, each with its dignity record attached."""
    return [
        {**tenure, "dignity": get_dignity(store, tenure.get("dignityId"))}
        for tenure in store.where("dignityTenures", "personId", person_id)
    ]


def get_current_tenure(store: DocumentStore, dignity_id: int) -> dict[str, Any] | None:
    """The first tenure without an end date."""
    for tenure in get_tenures_for_dignity(store, dignity_id):
        if not tenure.get("dateEnded"):
            return tenure
    return None


def update_dignity_tenure(store: DocumentStore, tenure_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    result = store.update("dignityTenures", tenure_id, updates)
    if result:
        sync_update(user_id, store.dataset_id, "dignityTenures", tenure_id, updates)
    return result


def delete_dignity_tenure(store: DocumentStore, tenure_id: int, user_id: str | None = None) -> None:
    store.delete("dignityTenures", tenure_id)
    sync_delete(user_id, store.dataset_id, "dignityTenures", tenure_id)


# ============================================================================
# Links
# ============================================================================

def link_dignity_to_entity(store: DocumentStore, link_data: dict[str, Any], user_id: str | None = None) -> int:
    link = {
        "dignityId": link_data.get("dignityId"),
        "entityType": link_data.get("entityType"),
        "entityId": link_data.get("entityId"),
        "linkType": link_data.get("linkType") or "primary",
        "notes": link_data.get("notes"),
        "created": now_iso(),
    }
    link_id = store.add("dignityLinks", link)
    sync_add(user_id, store.dataset_id, "dignityLinks", link_id, link)
    return link_id


def get_dignity_links(store: DocumentStore, dignity_id: int) -> list[dict[str, Any]]:
    return store.where("dignityLinks", "dignityId", dignity_id)


def get_dignities_for_entity(store: DocumentStore, entity_type: str, entity_id: int) -> list[dict[str, Any]]:
    """Dignities linked to an entity, each annotated with its linkType."""
    results = []
    for link in store.filter(
        "dignityLinks",
        lambda l: l.get("entityType") == entity_type and l.get("entityId") == entity_id,
    ):
        dignity = get_dignity(store, link.get("dignityId"))
        if dignity:
            results.append({**dignity, "linkType": link.get("linkType")})
    return results


def unlink_dignity(store: DocumentStore, link_id: int, user_id: str | None = None) -> None:
    store.delete("dignityLinks", link_id)
    sync_delete(user_id, store.dataset_id, "dignityLinks", link_id)


# ============================================================================
# Queries
# ============================================================================

def get_dignities_by_class(store: DocumentStore, dignity_class: str) -> list[dict[str, Any]]:
    return store.where("dignities", "dignityClass", dignity_class)


def get_dignities_by_rank(store: DocumentStore, dignity_rank: str) -> list[dict[str, Any]]:
    return store.where("dignities", "dignityRank", dignity_rank)


def get_dignities_by_nature(store: DocumentStore, nature: str) -> list[dict[str, Any]]:
    return store.where("dignities", "dignityNature", nature)


def get_dignities_for_house(store: DocumentStore, house_id: int) -> list[dict[str, Any]]:
    return store.where("dignities", "currentHouseId", house_id)


def get_dignities_for_person(store: DocumentStore, person_id: int) -> list[dict[str, Any]]:
    return store.where("dignities", "currentHolderId", person_id)


def get_subordinate_dignities(store: DocumentStore, dignity_id: int) -> list[dict[str, Any]]:
    """Dignities sworn directly to this one."""
    return store.where("dignities", "swornToId", dignity_id)


def get_feudal_chain(store: DocumentStore, dignity_id: int) -> list[dict[str, Any]]:
    """The dignity followed by each superior it is sworn to, stopping at a repeat."""
    chain = []
    visited = set()
    current_id = dignity_id
    while current_id and current_id not in visited:
        visited.add(current_id)
        dignity = get_dignity(store, current_id)
        if not dignity:
            break
        chain.append(dignity)
        current_id = dignity.get("swornToId")
    return chain


def search_dignities(store: DocumentStore, search_term: str) -> list[dict[str, Any]]:
    term = search_term.lower()
    fields = ("name", "shortName", "placeName", "seatName", "notes")
    return store.filter(
        "dignities",
        lambda d: any(term in (d.get(field) or "").lower() for field in fields),
    )


def get_dignity_statistics(store: DocumentStore) -> dict[str, Any]:
    dignities = store.all("dignities")
    by_class: dict[str, int] = {}
    by_rank: dict[str, int] = {}
    by_nature: dict[str, int] = {}
    for dignity in dignities:
        cls = dignity.get("dignityClass") or "other"
        by_class[cls] = by_class.get(cls, 0) + 1
        if dignity.get("dignityRank"):
            by_rank[dignity["dignityRank"]] = by_rank.get(dignity["dignityRank"], 0) + 1
        nature = dignity.get("dignityNature") or DEFAULT_NATURE
        by_nature[nature] = by_nature.get(nature, 0) + 1

    hereditary = sum(1 for d in dignities if d.get("isHereditary"))
    return {
        "total": len(dignities),
        "byClass": by_class,
        "byRank": by_rank,
        "byNature": by_nature,
        "vacant": sum(1 for d in dignities if d.get("isVacant") or not d.get("currentHolderId")),
        "hereditary": hereditary,
        "personal": len(dignities) - hereditary,
        "totalTenures": store.count("dignityTenures"),
        "withCodexEntry": sum(1 for d in dignities if d.get("codexEntryId")),
    }


# ============================================================================
# Display helpers
# ============================================================================

def format_dignity_title(dignity: dict[str, Any] | None, holder_name: str | None = None) -> str:
    """'Lord of Breakmount', 'Edmund, Lord of Breakmount' or 'Sir Edmund, Knight of the Vale'."""
    if not dignity:
        return ""

    name = dignity.get("name")
    if holder_name:
        holder = f"Sir {holder_name}" if dignity.get("dignityClass") == "sir" else holder_name
        return f"{holder}, {name}" if name else holder
    return name or ""


def get_rank_info(dignity_class: str | None, dignity_rank: str | None) -> dict[str, Any] | None:
    if not dignity_class or not dignity_rank:
        return None
    return DIGNITY_RANKS.get(dignity_class, {}).get(dignity_rank)


def get_reference_data() -> dict[str, Any]:
    return {
        "classes": DIGNITY_CLASSES,
        "ranks": DIGNITY_RANKS,
        "natures": DIGNITY_NATURES,
        "tenureTypes": TENURE_TYPES,
        "fealtyTypes": list(FEALTY_TYPES),
        "acquisitionTypes": list(ACQUISITION_TYPES),
        "endTypes": list(END_TYPES),
        "successionTypes": SUCCESSION_TYPES,
    }
