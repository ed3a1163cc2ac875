"""
Bastard naming convention.

Bastards of noble houses carry the "Dun" prefix before their parent house's
name: a bastard of House Wilfrey is "Dunwilfrey". The prefix is permanent,
even for a bastard who founds a cadet house. Commoner bastards (no house)
keep their common surname, and married women who took a husband's surname
are exempt because their maiden name preserves the origin.
"""

import random
from typing import Any

BASTARD_PREFIX = "Dun"

# Common medieval place-name endings for cadet houses
CADET_SUFFIXES = [
    "ford",
    "mere",
    "vale",
    "holm",
    "wick",
    "stead",
    "hall",
    "mount",
    "brook",
    "wood",
    "stone",
    "garde",
    "haven",
    "crest",
    "hearth",
    "moor",
    "dell",
    "hollow",
]


def extract_core_house_name(house_name: str | None) -> str:
    """'House Wilfrey of Blackmount' -> 'Wilfrey'."""
    if not house_name:
        return ""
    name = house_name.strip()
    if name.lower().startswith("house "):
        name = name[6:]
    of_index = name.lower().find(" of ")
    if of_index != -1:
        name = name[:of_index]
    return name.strip()


def generate_dun_surname(house_name: str | None) -> str:
    """'House Wilfrey of Blackmount' -> 'Dunwilfrey'."""
    core = extract_core_house_name(house_name)
    if not core:
        return ""
    return BASTARD_PREFIX + core.lower()


def is_valid_dun_surname(surname: str | None) -> bool:
    # "Duncan" passes too; the prefix check is purely lexical
    if not surname:
        return False
    return surname.startswith(BASTARD_PREFIX)


def extract_house_from_dun_surname(dun_surname: str | None) -> str | None:
    """'Dunwilfrey' -> 'wilfrey'; None for surnames without the prefix."""
    if not is_valid_dun_surname(dun_surname):
        return None
    return dun_surname[len(BASTARD_PREFIX):]


def should_have_dun_surname(person: dict[str, Any] | None) -> bool:
    """A noble bastard: legitimacyStatus 'bastard' with a house."""
    if not person:
        return False
    return person.get("legitimacyStatus") == "bastard" and person.get("houseId") is not None


def is_married_woman(person: dict[str, Any] | None, relationships: list[dict[str, Any]] | None = None) -> bool:
    """
    A woman who has married: gender 'female' with either a recorded
    maidenName or at least one spouse relationship.
    """
    if not person or person.get("gender") != "female":
        return False
    if person.get("maidenName"):
        return True

    person_id = person.get("id")
    for rel in relationships or []:
        if rel.get("relationshipType") != "spouse":
            continue
        if person_id is not None and person_id in (rel.get("person1Id"), rel.get("person2Id")):
            return True
    return False


def validate_bastard_surname(person: dict[str, Any] | None, house: dict[str, Any] | None) -> dict[str, Any]:
    """
    Check a person's surname against their bastard status.

    Returns:
        {isValid, message, suggestedSurname}
    """
    if not person or not should_have_dun_surname(person):
        return {"isValid": True, "message": "", "suggestedSurname": None}

    if is_valid_dun_surname(person.get("lastName")):
        return {
            "isValid": True,
            "message": "Surname follows bastard naming convention",
            "suggestedSurname": None,
        }

    suggested = generate_dun_surname(house.get("houseName")) if house else None
    return {
        "isValid": False,
        "message": f'Noble bastards should have the "{BASTARD_PREFIX}-" prefix in their surname',
        "suggestedSurname": suggested,
    }


def generate_cadet_house_name(parent_house_name: str | None, suffix: str | None, is_bastard_founder: bool = False) -> str:
    """
    Build a cadet house name from the first four letters of the parent house.

    ('Wilfrey', 'ford') -> 'Wilfford'; bastard founder -> 'Dunwilfford'.
    """
    core = extract_core_house_name(parent_house_name)
    if not core or not suffix:
        return ""

    root = core[:4].lower()
    clean_suffix = suffix.lower().strip()
    if is_bastard_founder:
        return BASTARD_PREFIX + root + clean_suffix

    combined = root + clean_suffix
    return combined[:1].upper() + combined[1:]


def generate_cadet_name_suggestions(
    parent_house_name: str | None,
    is_bastard_founder: bool = False,
    count: int = 6,
    rng: random.Random | None = None,
) -> list[str]:
    """Random cadet house names built from distinct suffixes."""
    rng = rng or random
    suffixes = rng.sample(CADET_SUFFIXES, min(count, len(CADET_SUFFIXES)))
    return [generate_cadet_house_name(parent_house_name, s, is_bastard_founder) for s in suffixes]


def audit_bastard_names(
    people: list[dict[str, Any]],
    houses: list[dict[str, Any]],
    relationships: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """
    Find noble bastards whose surname lacks the Dun prefix.

    Married women are skipped. Each issue carries the person, their house,
    the current surname and a suggested replacement.
    """
    houses_by_id = {house.get("id"): house for house in houses}
    issues = []

    for person in people:
        if not should_have_dun_surname(person):
            continue
        if is_valid_dun_surname(person.get("lastName")):
            continue
        if is_married_woman(person, relationships):
            continue

        house = houses_by_id.get(person.get("houseId"))
        suggested = generate_dun_surname(house.get("houseName")) if house else None
        issues.append({
            "person": person,
            "house": house,
            "currentSurname": person.get("lastName"),
            "suggestedSurname": suggested,
            "fullName": f"{person.get('firstName')} {person.get('lastName')}",
            "suggestedFullName": f"{person.get('firstName')} {suggested}" if suggested else None,
        })

    return issues
