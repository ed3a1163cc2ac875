"""Hierarchical family tree structures for the tree view."""

from typing import Any

from database import DocumentStore
from errors import NotFoundError
from gedcom_utils import PARENT_TYPES, year_from_date


class _Lineage:
    """Parent/child lookups over one snapshot of people and relationships."""

    def __init__(self, people: list[dict[str, Any]], relationships: list[dict[str, Any]]):
        self.people = {p["id"]: p for p in people}
        self.parents: dict[int, list[int]] = {}
        self.children: dict[int, list[int]] = {}
        self.spouses: dict[int, list[int]] = {}
        for rel in relationships:
            p1, p2 = rel.get("person1Id"), rel.get("person2Id")
            if p1 not in self.people or p2 not in self.people:
                continue
            if rel.get("relationshipType") in PARENT_TYPES:
                self.parents.setdefault(p2, []).append(p1)
                self.children.setdefault(p1, []).append(p2)
            elif rel.get("relationshipType") == "spouse":
                self.spouses.setdefault(p1, []).append(p2)
                self.spouses.setdefault(p2, []).append(p1)


def get_person_node(person: dict[str, Any]) -> dict[str, Any]:
    """Extract display fields for a tree node."""
    first_name = person.get("firstName") or ""
    last_name = person.get("lastName") or ""
    return {
        "id": person["id"],
        "firstName": first_name,
        "lastName": last_name,
        "fullName": f"{first_name} {last_name}".strip(),
        "gender": person.get("gender"),
        "houseId": person.get("houseId"),
        "legitimacyStatus": person.get("legitimacyStatus"),
        "birthYear": year_from_date(person.get("dateOfBirth")),
        "deathYear": year_from_date(person.get("dateOfDeath")),
    }


def build_bidirectional_tree(
    store: DocumentStore,
    person_id: int,
    ancestor_depth: int = 5,
    descendant_depth: int = 5,
) -> dict[str, Any]:
    """
    Build a tree centred on a person with both ancestors and descendants.

    The root node carries "ancestors" (parents, grandparents, ...) and
    "descendants" (children, grandchildren, ...); each nested node lists the
    next generation in "children". A person already on the current branch is
    not expanded again, so malformed circular data terminates.
    """
    lineage = _Lineage(store.all("people"), store.all("relationships"))
    if person_id not in lineage.people:
        raise NotFoundError("people", person_id)

    def build_node(pid: int, depth: int, max_depth: int, direction: str, branch: frozenset) -> dict[str, Any]:
        """Recursively build tree node with the next generation as children."""
        node = get_person_node(lineage.people[pid])
        node["direction"] = direction
        if depth >= max_depth:
            return node

        next_ids = lineage.parents if direction == "ancestor" else lineage.children
        children = [
            build_node(nid, depth + 1, max_depth, direction, branch | {nid})
            for nid in next_ids.get(pid, [])
            if nid not in branch
        ]
        if children:
            node["children"] = children
        return node

    root = get_person_node(lineage.people[person_id])
    root["direction"] = "root"
    start = frozenset({person_id})

    ancestors = [
        build_node(pid, 1, ancestor_depth, "ancestor", start | {pid})
        for pid in lineage.parents.get(person_id, [])
        if pid != person_id
    ]
    if ancestors:
        root["ancestors"] = ancestors

    descendants = [
        build_node(cid, 1, descendant_depth, "descendant", start | {cid})
        for cid in lineage.children.get(person_id, [])
        if cid != person_id
    ]
    if descendants:
        root["descendants"] = descendants

    spouses = [get_person_node(lineage.people[sid]) for sid in lineage.spouses.get(person_id, [])]
    if spouses:
        root["spouses"] = spouses

    return root


def find_root_ancestors(store: DocumentStore) -> list[dict[str, Any]]:
    """People with no recorded parents."""
    lineage = _Lineage(store.all("people"), store.all("relationships"))
    return [
        get_person_node(person)
        for pid, person in lineage.people.items()
        if not lineage.parents.get(pid)
    ]
