"""
Bulk family import.

A family template carries houses, people and relationships (and optionally
codex entries) that reference each other through string temp ids
(``_tempId``), or reference records already in the dataset by their
positive integer id.
"""

import logging
from typing import Any, Callable

import codex_service
import genealogy
from database import DocumentStore
from importers.codex_import import resolve_auto_link

logger = logging.getLogger("lineageweaver.import.family")

ProgressFn = Callable[[dict[str, Any]], None]


def is_existing_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def resolve_id(value: Any, id_map: dict[str, int]) -> int | None:
    if is_existing_id(value):
        return value
    if is_temp_id(value):
        return id_map.get(value)
    return None


# ============================================================================
# Validation
# ============================================================================

def validate_template(store: DocumentStore, template: dict[str, Any]) -> dict[str, Any]:
    """
    Check a family template before anything is written.

    Returns:
        {valid, errors, warnings, existingRefs}
    """
    errors: list[str] = []
    warnings: list[str] = []
    existing_refs: dict[str, list[dict[str, Any]]] = {"houses": [], "people": []}

    houses = template.get("houses")
    if houses is None:
        houses = []
    if not isinstance(houses, list):
        errors.append('Invalid "houses" - must be an array')
    if not isinstance(template.get("people"), list):
        errors.append('Missing or invalid "people" array')
    if not isinstance(template.get("relationships"), list):
        errors.append('Missing or invalid "relationships" array')
    codex_entries = template.get("codexEntries") or []
    if not isinstance(codex_entries, list):
        errors.append('Invalid "codexEntries" - must be an array')
    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings, "existingRefs": existing_refs}

    people = template["people"]
    relationships = template["relationships"]
    for kind, items in (("House", houses), ("Person", people), ("Relationship", relationships),
                        ("Codex entry", codex_entries)):
        errors.extend(
            f"{kind} at index {index}: must be an object"
            for index, item in enumerate(items)
            if not isinstance(item, dict)
        )
    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings, "existingRefs": existing_refs}

    house_temp_ids = {h["_tempId"] for h in houses if is_temp_id(h.get("_tempId"))}
    person_temp_ids = {p["_tempId"] for p in people if is_temp_id(p.get("_tempId"))}
    checked: dict[tuple[str, int], bool] = {}

    def existing(collection: str, record_id: int) -> bool:
        key = (collection, record_id)
        if key not in checked:
            record = store.get(collection, record_id)
            checked[key] = record is not None
            if record and collection == "houses":
                existing_refs["houses"].append({"id": record_id, "name": record.get("houseName")})
            elif record:
                existing_refs["people"].append({
                    "id": record_id,
                    "name": f"{record.get('firstName')} {record.get('lastName')}",
                })
        return checked[key]

    def valid_house_ref(ref: Any) -> bool:
        if is_temp_id(ref):
            return ref in house_temp_ids
        return is_existing_id(ref) and existing("houses", ref)

    def valid_person_ref(ref: Any) -> bool:
        if is_temp_id(ref):
            return ref in person_temp_ids
        return is_existing_id(ref) and existing("people", ref)

    for index, house in enumerate(houses):
        label = house.get("_tempId") or index
        if not is_temp_id(house.get("_tempId")):
            errors.append(f"House at index {index}: Missing or invalid _tempId")
        if not house.get("houseName"):
            errors.append(f'House "{label}": Missing houseName')
        if house.get("houseType") and house["houseType"] not in genealogy.HOUSE_TYPES:
            errors.append(f'House "{label}": Invalid houseType "{house["houseType"]}"')
        for field in ("parentHouseId", "swornTo"):
            if house.get(field) and not valid_house_ref(house[field]):
                errors.append(f'House "{label}": {field} "{house[field]}" not found')
        if house.get("foundedBy") and not valid_person_ref(house["foundedBy"]):
            errors.append(f'House "{label}": foundedBy "{house["foundedBy"]}" not found')

    for index, person in enumerate(people):
        label = person.get("_tempId") or index
        if not is_temp_id(person.get("_tempId")):
            errors.append(f"Person at index {index}: Missing or invalid _tempId")
        for field in ("firstName", "lastName", "gender"):
            if not person.get(field):
                errors.append(f'Person "{label}": Missing {field}')
        if person.get("houseId") is None:
            errors.append(f'Person "{label}": Missing houseId')
        elif not valid_house_ref(person["houseId"]):
            errors.append(
                f'Person "{label}": houseId "{person["houseId"]}" not found '
                "(must be a temp ID from houses array or existing house ID number)"
            )
        if person.get("gender") and person["gender"] not in genealogy.GENDERS:
            errors.append(f'Person "{label}": Invalid gender "{person["gender"]}"')
        status = person.get("legitimacyStatus")
        if status and status not in genealogy.LEGITIMACY_STATUSES:
            errors.append(f'Person "{label}": Invalid legitimacyStatus "{status}"')

    for index, rel in enumerate(relationships):
        for field in ("person1Id", "person2Id"):
            if rel.get(field) is None:
                errors.append(f"Relationship at index {index}: Missing {field}")
            elif not valid_person_ref(rel[field]):
                errors.append(
                    f'Relationship {index}: {field} "{rel[field]}" not found '
                    "(must be a temp ID or existing person ID number)"
                )
        rel_type = rel.get("relationshipType")
        if not rel_type:
            errors.append(f"Relationship at index {index}: Missing relationshipType")
        elif rel_type not in genealogy.RELATIONSHIP_TYPES:
            errors.append(f'Relationship {index}: Invalid relationshipType "{rel_type}"')

    for index, entry in enumerate(codex_entries):
        label = entry.get("_tempId") or index
        if not is_temp_id(entry.get("_tempId")):
            errors.append(f"Codex entry at index {index}: Missing or invalid _tempId")
        for field in ("type", "title"):
            if not (isinstance(entry.get(field), str) and entry[field]):
                errors.append(f'Codex entry "{label}": Missing {field}')
        auto_link = entry.get("_autoLink") or {}
        if not isinstance(auto_link, dict):
            errors.append(f'Codex entry "{label}": _autoLink must be an object')
            continue
        if auto_link.get("entityType") == "house" and auto_link.get("entityId"):
            if not valid_house_ref(auto_link["entityId"]):
                errors.append(f'Codex entry "{label}": _autoLink.entityId "{auto_link["entityId"]}" not found')
        if auto_link.get("entityType") == "person" and auto_link.get("personId"):
            if not valid_person_ref(auto_link["personId"]):
                errors.append(f'Codex entry "{label}": _autoLink.personId "{auto_link["personId"]}" not found')

    if existing_refs["houses"] or existing_refs["people"]:
        warnings.append(
            f"Template references {len(existing_refs['houses'])} existing house(s) "
            f"and {len(existing_refs['people'])} existing person(s)"
        )

    return {"valid": not errors, "errors": errors, "warnings": warnings, "existingRefs": existing_refs}


# ============================================================================
# Processing
# ============================================================================

def sort_houses_by_dependency(houses: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order houses so every parent house comes before its cadet branches."""
    by_temp_id = {h.get("_tempId"): h for h in houses}
    ordered: list[dict[str, Any]] = []
    placed: set = set()

    def place(house: dict[str, Any], visiting: set) -> None:
        key = house.get("_tempId")
        if key in placed or key in visiting:
            return
        parent = by_temp_id.get(house.get("parentHouseId"))
        if parent is not None:
            place(parent, visiting | {key})
        ordered.append(house)
        placed.add(key)

    for house in houses:
        place(house, set())
    return ordered


def process_family_import(
    store: DocumentStore,
    template: dict[str, Any],
    user_id: str | None = None,
    skip_codex: bool = False,
    on_progress: ProgressFn | None = None,
) -> dict[str, Any]:
    """
    Create houses, people, relationships and codex entries from a template.

    Houses are created parent-first without auto codex entries; swornTo and
    foundedBy are patched in once their targets exist. A record that fails
    is reported in errors and the rest of the batch continues.

    Returns:
        {success, errors, warnings, summary, created, idMappings}
    """
    validation = validate_template(store, template)
    if not validation["valid"]:
        return {
            "success": False,
            "errors": validation["errors"],
            "warnings": validation["warnings"],
            "existingRefs": validation["existingRefs"],
            "summary": None,
            "created": None,
            "idMappings": None,
        }

    def progress(step: str, message: str) -> None:
        if on_progress:
            on_progress({"step": step, "message": message})

    houses = template.get("houses") or []
    people = template["people"]
    relationships = template["relationships"]
    house_ids: dict[str, int] = {}
    person_ids: dict[str, int] = {}
    codex_ids: dict[str, int] = {}
    created: dict[str, list[dict[str, Any]]] = {"houses": [], "people": [], "relationships": [], "codexEntries": []}
    errors: list[str] = []

    progress("houses", f"Creating {len(houses)} houses...")
    for house in sort_houses_by_dependency(houses):
        house_data = {
            "houseName": house.get("houseName"),
            "houseType": house.get("houseType") or "main",
            "colorCode": house.get("colorCode") or "#4169E1",
            "motto": house.get("motto"),
            "sigil": house.get("sigil"),
            "foundedDate": house.get("foundedDate"),
            "foundedBy": None,
            "swornTo": None,
            "notes": house.get("notes") or "",
        }
        if house.get("parentHouseId"):
            parent_id = resolve_id(house["parentHouseId"], house_ids)
            if parent_id:
                house_data["parentHouseId"] = parent_id
            else:
                errors.append(f'House "{house.get("_tempId")}": Could not resolve parentHouseId')
        try:
            real_id = genealogy.add_house(store, house_data, user_id=user_id, skip_codex_creation=True)
        except Exception as e:
            errors.append(f'Failed to create house "{house.get("_tempId")}": {e}')
            continue
        house_ids[house["_tempId"]] = real_id
        created["houses"].append({"tempId": house["_tempId"], "realId": real_id, "name": house.get("houseName")})

    for house in houses:
        real_id = house_ids.get(house.get("_tempId"))
        sworn_to = resolve_id(house.get("swornTo"), house_ids)
        if real_id and sworn_to:
            genealogy.update_house(store, real_id, {"swornTo": sworn_to}, user_id=user_id)

    progress("people", f"Creating {len(people)} people...")
    for person in people:
        house_id = resolve_id(person.get("houseId"), house_ids)
        if not house_id:
            errors.append(f'Person "{person.get("_tempId")}": Could not resolve houseId "{person.get("houseId")}"')
            continue
        person_data = {
            "firstName": person.get("firstName"),
            "lastName": person.get("lastName"),
            "maidenName": person.get("maidenName"),
            "dateOfBirth": person.get("dateOfBirth"),
            "dateOfDeath": person.get("dateOfDeath"),
            "gender": person.get("gender"),
            "houseId": house_id,
            "legitimacyStatus": person.get("legitimacyStatus") or "legitimate",
            "bastardStatus": person.get("bastardStatus"),
            "notes": person.get("notes") or "",
            "epithets": person.get("epithets") or [],
            "codexEntryId": None,
        }
        try:
            real_id = genealogy.add_person(store, person_data, user_id=user_id)
        except Exception as e:
            errors.append(f'Failed to create person "{person.get("_tempId")}": {e}')
            continue
        person_ids[person["_tempId"]] = real_id
        created["people"].append({
            "tempId": person["_tempId"],
            "realId": real_id,
            "name": f"{person.get('firstName')} {person.get('lastName')}",
        })

    for house in houses:
        real_id = house_ids.get(house.get("_tempId"))
        founder = resolve_id(house.get("foundedBy"), person_ids)
        if real_id and founder:
            genealogy.update_house(store, real_id, {"foundedBy": founder}, user_id=user_id)

    progress("relationships", f"Creating {len(relationships)} relationships...")
    for rel in relationships:
        person1 = resolve_id(rel.get("person1Id"), person_ids)
        person2 = resolve_id(rel.get("person2Id"), person_ids)
        if not person1 or not person2:
            missing = "person1Id" if not person1 else "person2Id"
            errors.append(f'Relationship: Could not resolve {missing} "{rel.get(missing)}"')
            continue
        rel_data = {
            "person1Id": person1,
            "person2Id": person2,
            "relationshipType": rel.get("relationshipType"),
            "biologicalParent": rel.get("biologicalParent"),
            "marriageDate": rel.get("marriageDate"),
            "divorceDate": rel.get("divorceDate"),
            "marriageStatus": rel.get("marriageStatus"),
        }
        try:
            real_id = genealogy.add_relationship(store, rel_data, user_id=user_id)
        except Exception as e:
            errors.append(f"Failed to create relationship: {e}")
            continue
        created["relationships"].append({
            "realId": real_id,
            "type": rel.get("relationshipType"),
            "person1": rel.get("person1Id"),
            "person2": rel.get("person2Id"),
        })

    codex_entries = template.get("codexEntries") or []
    if not skip_codex and codex_entries:
        progress("codex", f"Creating {len(codex_entries)} Codex entries...")
        for entry in codex_entries:
            entry_data = {
                "type": entry.get("type"),
                "title": entry.get("title"),
                "subtitle": entry.get("subtitle"),
                "content": entry.get("content") or "",
                "category": entry.get("category"),
                "tags": entry.get("tags") or [],
                "era": entry.get("era"),
            }
            links = resolve_auto_link(entry.get("_autoLink") or {}, house_ids, person_ids)
            entry_data.update(links)
            try:
                real_id = codex_service.create_entry(store, entry_data, user_id=user_id)
                if "houseId" in links:
                    genealogy.update_house(store, links["houseId"], {"codexEntryId": real_id}, user_id=user_id)
                if "personId" in links:
                    genealogy.update_person(store, links["personId"], {"codexEntryId": real_id}, user_id=user_id)
            except Exception as e:
                errors.append(f'Failed to create Codex entry "{entry.get("_tempId")}": {e}')
                continue
            codex_ids[entry.get("_tempId")] = real_id
            created["codexEntries"].append({"tempId": entry.get("_tempId"), "realId": real_id, "title": entry.get("title")})

    progress("complete", "Import complete!")
    summary = {
        "housesCreated": len(created["houses"]),
        "peopleCreated": len(created["people"]),
        "relationshipsCreated": len(created["relationships"]),
        "codexEntriesCreated": len(created["codexEntries"]),
    }
    logger.info(f"Family import finished: {summary}, {len(errors)} errors")
    return {
        "success": not errors,
        "errors": errors,
        "warnings": validation["warnings"],
        "summary": summary,
        "created": created,
        "idMappings": {"houses": house_ids, "people": person_ids, "codex": codex_ids},
    }


def generate_import_report(result: dict[str, Any]) -> dict[str, Any]:
    if not result.get("success"):
        errors = result.get("errors") or []
        return {
            "title": "Import Failed",
            "message": f"Import encountered {len(errors)} error(s)",
            "errors": errors,
        }

    summary = result["summary"]
    lines = [
        "Import Successful!",
        "",
        "Summary:",
        f"   - {summary['housesCreated']} house(s) created",
        f"   - {summary['peopleCreated']} people created",
        f"   - {summary['relationshipsCreated']} relationship(s) created",
    ]
    if summary["codexEntriesCreated"]:
        lines.append(f"   - {summary['codexEntriesCreated']} Codex entries created")
    if result["created"]["houses"]:
        lines.extend(["", "Houses:"])
        lines.extend(f"   - {h['name']} (ID: {h['realId']})" for h in result["created"]["houses"])
    return {"title": "Import Successful", "message": "\n".join(lines), "errors": None}
