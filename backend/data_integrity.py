"""
Data validation and integrity checks.

Detects people who would become their own ancestors, references to records
that no longer exist, and inconsistent duplicate spouse records.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from database import DocumentStore
from gedcom_utils import PARENT_TYPES

logger = logging.getLogger("lineageweaver.integrity")


def _parents_by_child(relationships: list[dict[str, Any]]) -> dict[Any, list[Any]]:
    parents: dict[Any, list[Any]] = {}
    for rel in relationships:
        if rel.get("relationshipType") in PARENT_TYPES:
            parents.setdefault(rel.get("person2Id"), []).append(rel.get("person1Id"))
    return parents


def detect_circular_ancestry(child_id: Any, proposed_parent_id: Any, relationships: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Check whether making proposed_parent_id a parent of child_id would
    create a loop, i.e. the child is the proposed parent or one of its ancestors.

    Returns:
        {isCircular, path}; path runs from the proposed parent up to the child
    """
    if child_id == proposed_parent_id:
        return {"isCircular": True, "path": [proposed_parent_id]}

    parents = _parents_by_child(relationships)
    visited = set()
    stack = [(proposed_parent_id, [proposed_parent_id])]
    while stack:
        current, path = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        for ancestor in parents.get(current, []):
            if ancestor == child_id:
                return {"isCircular": True, "path": path + [child_id]}
            if ancestor not in visited:
                stack.append((ancestor, path + [ancestor]))

    return {"isCircular": False, "path": None}


def validate_parent_child_relationship(parent_id: Any, child_id: Any, relationships: list[dict[str, Any]]) -> dict[str, Any]:
    """Reject self-parenting, duplicate parent links and circular ancestry."""
    if parent_id == child_id:
        return {"valid": False, "error": "A person cannot be their own parent"}

    for rel in relationships:
        if (
            rel.get("relationshipType") in PARENT_TYPES
            and rel.get("person1Id") == parent_id
            and rel.get("person2Id") == child_id
        ):
            return {"valid": False, "error": "This parent-child relationship already exists"}

    check = detect_circular_ancestry(child_id, parent_id, relationships)
    if check["isCircular"]:
        path = " → ".join(str(p) for p in check["path"])
        return {"valid": False, "error": f"Cannot create relationship: would cause circular ancestry ({path})"}

    return {"valid": True, "error": None}


def find_orphaned_records(data: dict[str, list[dict[str, Any]]]) -> dict[str, list[dict[str, Any]]]:
    """Relationships, house memberships and codex links that point at missing records."""
    people_ids = {p["id"] for p in data.get("people", [])}
    house_ids = {h["id"] for h in data.get("houses", [])}
    codex_ids = {e["id"] for e in data.get("codexEntries", [])}

    orphans: dict[str, list[dict[str, Any]]] = {
        "relationships": [],
        "peopleWithMissingHouse": [],
        "codexLinks": [],
    }

    for rel in data.get("relationships", []):
        p1, p2 = rel.get("person1Id"), rel.get("person2Id")
        if p1 not in people_ids or p2 not in people_ids:
            orphans["relationships"].append({
                "id": rel.get("id"),
                "missingPerson1": p1 if p1 not in people_ids else None,
                "missingPerson2": p2 if p2 not in people_ids else None,
            })

    for person in data.get("people", []):
        house_id = person.get("houseId")
        if house_id and house_id not in house_ids:
            orphans["peopleWithMissingHouse"].append({
                "personId": person["id"],
                "personName": f"{person.get('firstName')} {person.get('lastName')}",
                "missingHouseId": house_id,
            })

    for link in data.get("codexLinks", []):
        source, target = link.get("sourceId"), link.get("targetId")
        if source not in codex_ids or target not in codex_ids:
            orphans["codexLinks"].append({
                "id": link.get("id"),
                "missingSource": source if source not in codex_ids else None,
                "missingTarget": target if target not in codex_ids else None,
            })

    return orphans


def validate_bidirectional_relationships(relationships: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Spouse pairs stored in both directions must agree on marriageDate."""
    marriages = [r for r in relationships if r.get("relationshipType") == "spouse"]
    issues = []
    seen = set()

    for marriage in marriages:
        for reverse in marriages:
            if reverse.get("id") == marriage.get("id"):
                continue
            if (reverse.get("person1Id"), reverse.get("person2Id")) != (marriage.get("person2Id"), marriage.get("person1Id")):
                continue
            key = frozenset((marriage.get("id"), reverse.get("id")))
            if key in seen:
                continue
            seen.add(key)
            if marriage.get("marriageDate") != reverse.get("marriageDate"):
                issues.append({
                    "type": "marriage-date-mismatch",
                    "relationship1": marriage.get("id"),
                    "relationship2": reverse.get("id"),
                    "person1": marriage.get("person1Id"),
                    "person2": marriage.get("person2Id"),
                })

    return issues


def find_circular_relationships(relationships: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Existing parent links whose child is also an ancestor of the parent."""
    issues = []
    for rel in relationships:
        if rel.get("relationshipType") not in PARENT_TYPES:
            continue
        parent_id, child_id = rel.get("person1Id"), rel.get("person2Id")
        check = detect_circular_ancestry(child_id, parent_id, relationships)
        if check["isCircular"]:
            issues.append({
                "relationshipId": rel.get("id"),
                "parentId": parent_id,
                "childId": child_id,
                "path": check["path"],
            })
    return issues


def run_integrity_check(data: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    """
    Run every check over a snapshot of the dataset.

    Args:
        data: {people, houses, relationships, codexEntries, codexLinks}

    Returns:
        {healthy, timestamp, issues, summary}
    """
    relationships = data.get("relationships", [])
    orphans = find_orphaned_records(data)
    bidirectional = validate_bidirectional_relationships(relationships)
    circular = find_circular_relationships(relationships)

    issues = {
        "orphanedRelationships": orphans["relationships"],
        "orphanedPeopleHouses": orphans["peopleWithMissingHouse"],
        "orphanedCodexLinks": orphans["codexLinks"],
        "bidirectionalInconsistencies": bidirectional,
        "circularAncestry": circular,
    }
    healthy = not any(issues.values())
    if not healthy:
        counts = {name: len(found) for name, found in issues.items() if found}
        logger.warning(f"Integrity check found issues: {counts}")

    return {
        "healthy": healthy,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "issues": issues,
        "summary": {
            "totalOrphanedRelationships": len(orphans["relationships"]),
            "totalOrphanedPeopleHouses": len(orphans["peopleWithMissingHouse"]),
            "totalOrphanedCodexLinks": len(orphans["codexLinks"]),
            "totalBidirectionalIssues": len(bidirectional),
            "totalCircularIssues": len(circular),
        },
    }


def check_dataset_integrity(store: DocumentStore) -> dict[str, Any]:
    """Run the integrity check over everything stored in a dataset."""
    return run_integrity_check({
        collection: store.all(collection)
        for collection in ("people", "houses", "relationships", "codexEntries", "codexLinks")
    })
