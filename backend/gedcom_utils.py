"""GEDCOM interchange and person similarity utilities."""

import os
import re
import tempfile
from difflib import SequenceMatcher
from typing import Any

from gedcom.element.family import FamilyElement
from gedcom.element.individual import IndividualElement
from gedcom.parser import Parser

MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
DATE_QUALIFIERS = {"ABT", "BEF", "AFT", "EST", "CAL", "FROM", "TO", "INT"}
PARENT_TYPES = ("parent", "parent-child")

GENDER_TO_SEX = {"male": "M", "female": "F"}
SEX_TO_GENDER = {"M": "male", "F": "female"}


# ============================================================================
# Dates
# ============================================================================

def year_from_date(date_str: str | None) -> int | None:
    """Extract the year from a stored date ('1250-03-12', '1250') or a GEDCOM date ('ABT 12 MAR 1250')."""
    if not date_str:
        return None
    text = str(date_str).strip()

    iso = re.match(r"^(\d{1,4})(?:-\d{1,2}){0,2}$", text)
    if iso:
        return int(iso.group(1))

    years = re.findall(r"\b\d{3,4}\b", text)
    return int(years[-1]) if years else None


def gedcom_date_to_iso(date_str: str | None) -> str | None:
    """
    Convert a GEDCOM date to the stored form.

    '12 MAR 1250' -> '1250-03-12', 'MAR 1250' -> '1250-03', 'ABT 1250' -> '1250'.
    Unrecognised dates fall back to their year, or None.
    """
    if not date_str:
        return None

    parts = [p for p in date_str.upper().split() if p not in DATE_QUALIFIERS]
    day = month = year = None
    for part in parts:
        if part in MONTHS:
            month = MONTHS.index(part) + 1
        elif part.isdigit():
            if month is None and day is None and len(part) <= 2:
                day = int(part)
            else:
                year = int(part)

    if year is None:
        fallback = year_from_date(date_str)
        return str(fallback) if fallback is not None else None
    if month is None:
        return str(year)
    if day is None:
        return f"{year}-{month:02d}"
    return f"{year}-{month:02d}-{day:02d}"


def iso_to_gedcom_date(date_str: str | None) -> str | None:
    """'1250-03-12' -> '12 MAR 1250'; free-form dates pass through upper-cased."""
    if not date_str:
        return None
    text = str(date_str).strip()
    match = re.match(r"^(\d{1,4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?$", text)
    if not match:
        return text.upper()

    year, month, day = match.groups()
    if not month:
        return str(int(year))
    month_name = MONTHS[int(month) - 1]
    if not day:
        return f"{month_name} {int(year)}"
    return f"{int(day)} {month_name} {int(year)}"


# ============================================================================
# Export GEDCOM
# ============================================================================

def export_family_gedcom(
    houses: list[dict[str, Any]],
    people: list[dict[str, Any]],
    relationships: list[dict[str, Any]],
) -> str:
    """
    Export houses, people and relationships as GEDCOM 5.5.1 text.

    Spouse relationships become FAM records; children are attached to the
    family of their recorded parents, which is created when no marriage exists.
    House membership is kept in a NOTE on each individual.
    """
    houses_by_id = {h["id"]: h for h in houses}
    people_by_id = {p["id"]: p for p in people}

    families: dict[frozenset, dict[str, Any]] = {}

    def family_for(parent_ids: frozenset) -> dict[str, Any]:
        if parent_ids not in families:
            families[parent_ids] = {
                "pointer": f"@F{len(families) + 1}@",
                "parents": sorted(parent_ids),
                "children": [],
                "marriageDate": None,
            }
        return families[parent_ids]

    for rel in relationships:
        if rel.get("relationshipType") != "spouse":
            continue
        if rel.get("person1Id") in people_by_id and rel.get("person2Id") in people_by_id:
            family = family_for(frozenset((rel["person1Id"], rel["person2Id"])))
            family["marriageDate"] = rel.get("marriageDate")

    parents_of: dict[int, list[int]] = {}
    for rel in relationships:
        if rel.get("relationshipType") in PARENT_TYPES:
            parent_id, child_id = rel.get("person1Id"), rel.get("person2Id")
            if parent_id in people_by_id and child_id in people_by_id:
                parents_of.setdefault(child_id, []).append(parent_id)

    for child_id, parent_ids in parents_of.items():
        family = family_for(frozenset(parent_ids[:2]))
        family["children"].append(child_id)

    # Membership pointers for each individual
    fams: dict[int, list[str]] = {}
    famc: dict[int, list[str]] = {}
    for family in families.values():
        for parent_id in family["parents"]:
            fams.setdefault(parent_id, []).append(family["pointer"])
        for child_id in family["children"]:
            famc.setdefault(child_id, []).append(family["pointer"])

    lines = [
        "0 HEAD",
        "1 SOUR LINEAGEWEAVER",
        "2 NAME LineageWeaver",
        "1 GEDC",
        "2 VERS 5.5.1",
        "2 FORM LINEAGE-LINKED",
        "1 CHAR UTF-8",
    ]

    for person in people:
        first = person.get("firstName") or ""
        last = person.get("lastName") or ""
        lines.append(f"0 @I{person['id']}@ INDI")
        lines.append(f"1 NAME {first} /{last}/".replace("  ", " "))
        if first:
            lines.append(f"2 GIVN {first}")
        if last:
            lines.append(f"2 SURN {last}")
        lines.append(f"1 SEX {GENDER_TO_SEX.get(person.get('gender'), 'U')}")

        for tag, field in (("BIRT", "dateOfBirth"), ("DEAT", "dateOfDeath")):
            gedcom_date = iso_to_gedcom_date(person.get(field))
            if gedcom_date:
                lines.append(f"1 {tag}")
                lines.append(f"2 DATE {gedcom_date}")

        for pointer in fams.get(person["id"], []):
            lines.append(f"1 FAMS {pointer}")
        for pointer in famc.get(person["id"], []):
            lines.append(f"1 FAMC {pointer}")

        house = houses_by_id.get(person.get("houseId"))
        if house:
            lines.append(f"1 NOTE House: {house.get('houseName')}")
        if person.get("legitimacyStatus") and person["legitimacyStatus"] != "legitimate":
            lines.append(f"1 NOTE Legitimacy: {person['legitimacyStatus']}")

    for family in families.values():
        lines.append(f"0 {family['pointer']} FAM")
        parents = [people_by_id[pid] for pid in family["parents"]]
        husband = next((p for p in parents if p.get("gender") == "male"), None)
        wife = next((p for p in parents if p.get("gender") == "female" and p is not husband), None)
        for parent in parents:
            if parent is not husband and parent is not wife:
                if husband is None:
                    husband = parent
                elif wife is None:
                    wife = parent
        if husband:
            lines.append(f"1 HUSB @I{husband['id']}@")
        if wife:
            lines.append(f"1 WIFE @I{wife['id']}@")
        for child_id in family["children"]:
            lines.append(f"1 CHIL @I{child_id}@")
        marriage_date = iso_to_gedcom_date(family["marriageDate"])
        if marriage_date:
            lines.append("1 MARR")
            lines.append(f"2 DATE {marriage_date}")

    lines.append("0 TRLR")
    return "\n".join(lines) + "\n"


# ============================================================================
# Import GEDCOM
# ============================================================================

def parse_gedcom_file(file_path: str) -> Parser:
    """Parse a GEDCOM file and return the parser."""
    parser = Parser()
    parser.parse_file(file_path, strict=False)
    return parser


def parse_gedcom_content(content: str) -> Parser:
    """Parse GEDCOM content from a string."""
    # Write content to temp file (python-gedcom requires file path)
    with tempfile.NamedTemporaryFile(mode='w', suffix='.ged', delete=False, encoding='utf-8') as f:
        f.write(content)
        temp_path = f.name

    try:
        return parse_gedcom_file(temp_path)
    finally:
        os.unlink(temp_path)


def get_individual_data(element: IndividualElement) -> dict[str, Any]:
    """Extract person fields from an individual element."""
    first_name, last_name = element.get_name()

    birth_data = element.get_birth_data()
    death_data = element.get_death_data()
    birth_date = birth_data[0] if birth_data and birth_data[0] else None
    death_date = death_data[0] if death_data and death_data[0] else None

    return {
        "pointer": element.get_pointer(),
        "firstName": first_name,
        "lastName": last_name,
        "gender": SEX_TO_GENDER.get(element.get_gender(), "other"),
        "dateOfBirth": gedcom_date_to_iso(birth_date),
        "dateOfDeath": gedcom_date_to_iso(death_date),
    }


def _marriage_date(family: FamilyElement) -> str | None:
    for child in family.get_child_elements():
        if child.get_tag() == "MARR":
            for detail in child.get_child_elements():
                if detail.get_tag() == "DATE":
                    return gedcom_date_to_iso(detail.get_value())
    return None


def gedcom_to_family_template(parser: Parser) -> dict[str, Any]:
    """
    Convert a parsed GEDCOM tree into a family import template.

    Each distinct surname becomes a main house; individuals without a
    surname are grouped under 'Unknown'. Families yield a spouse
    relationship for the couple and a parent relationship per parent/child.
    """
    houses: dict[str, dict[str, Any]] = {}
    people: list[dict[str, Any]] = []
    relationships: list[dict[str, Any]] = []
    temp_ids: dict[str, str] = {}

    for element in parser.get_root_child_elements():
        if not isinstance(element, IndividualElement):
            continue
        data = get_individual_data(element)
        surname = (data["lastName"] or "").strip() or "Unknown"
        house_key = surname.lower()
        if house_key not in houses:
            houses[house_key] = {
                "_tempId": f"house-{len(houses) + 1}",
                "houseName": surname,
                "houseType": "main",
            }

        temp_id = f"person-{len(people) + 1}"
        temp_ids[data["pointer"]] = temp_id
        people.append({
            "_tempId": temp_id,
            "firstName": (data["firstName"] or "").strip() or "Unknown",
            "lastName": surname,
            "gender": data["gender"],
            "houseId": houses[house_key]["_tempId"],
            "dateOfBirth": data["dateOfBirth"],
            "dateOfDeath": data["dateOfDeath"],
            "legitimacyStatus": "legitimate",
        })

    for element in parser.get_root_child_elements():
        if not isinstance(element, FamilyElement):
            continue

        parents = [
            temp_ids.get(member.get_pointer())
            for tag in ("HUSB", "WIFE")
            for member in parser.get_family_members(element, tag)
            if isinstance(member, IndividualElement)
        ]
        parents = [p for p in parents if p]
        children = [
            temp_ids.get(member.get_pointer())
            for member in parser.get_family_members(element, "CHIL")
            if isinstance(member, IndividualElement)
        ]

        if len(parents) == 2:
            relationships.append({
                "person1Id": parents[0],
                "person2Id": parents[1],
                "relationshipType": "spouse",
                "marriageDate": _marriage_date(element),
            })
        for parent in parents:
            for child in children:
                if child:
                    relationships.append({
                        "person1Id": parent,
                        "person2Id": child,
                        "relationshipType": "parent",
                    })

    return {
        "houses": list(houses.values()),
        "people": people,
        "relationships": relationships,
    }


# ============================================================================
# Duplicate Detection
# ============================================================================

def person_summary(person: dict[str, Any]) -> dict[str, Any]:
    """Comparable fields for a stored person record."""
    full_name = f"{person.get('firstName') or ''} {person.get('lastName') or ''}".strip()
    return {
        "fullName": full_name,
        "birthYear": year_from_date(person.get("dateOfBirth")),
        "deathYear": year_from_date(person.get("dateOfDeath")),
        "birthPlace": person.get("birthPlace"),
        "gender": GENDER_TO_SEX.get(person.get("gender"), "U"),
    }


def calculate_person_similarity(existing: dict[str, Any], candidate: dict[str, Any]) -> float:
    """
    Calculate similarity score (0.0 to 1.0) between two person summaries.

    Weights:
    - Name similarity: 35%
    - Birth year proximity: 25%
    - Birth place match: 20%
    - Gender match: 10%
    - Death year proximity: 10%

    Args:
        existing: dict with 'fullName', 'birthYear', 'birthPlace', 'gender', 'deathYear'
        candidate: dict of the same shape

    Returns:
        float: Similarity score 0.0 to 1.0
    """
    score = 0.0

    # 1. NAME MATCHING (35 points)
    if candidate.get('fullName') and existing.get('fullName'):
        ratio = SequenceMatcher(
            None,
            existing['fullName'].lower(),
            candidate['fullName'].lower()
        ).ratio()
        score += ratio * 0.35

    # 2. BIRTH YEAR PROXIMITY (25 points)
    if existing.get('birthYear') and candidate.get('birthYear'):
        year_diff = abs(existing['birthYear'] - candidate['birthYear'])
        if year_diff == 0:
            score += 0.25
        elif year_diff <= 1:
            score += 0.20
        elif year_diff <= 3:
            score += 0.15
        elif year_diff <= 5:
            score += 0.10

    # 3. BIRTH PLACE MATCHING (20 points)
    if existing.get('birthPlace') and candidate.get('birthPlace'):
        place1 = existing['birthPlace'].lower().strip()
        place2 = candidate['birthPlace'].lower().strip()

        if place1 == place2:
            score += 0.20
        elif place2 in place1 or place1 in place2:
            score += 0.15
        else:
            parts1 = set(p.strip() for p in place1.split(','))
            parts2 = set(p.strip() for p in place2.split(','))
            if parts1 and parts2:
                overlap = len(parts1 & parts2) / max(len(parts1), len(parts2))
                score += overlap * 0.20

    # 4. GENDER MATCH (10 points)
    if existing.get('gender') and candidate.get('gender'):
        if existing['gender'] == candidate['gender']:
            score += 0.10
        elif 'U' not in (existing['gender'], candidate['gender']):
            # Definite mismatch
            score -= 0.05

    # 5. DEATH YEAR PROXIMITY (10 points)
    if existing.get('deathYear') and candidate.get('deathYear'):
        year_diff = abs(existing['deathYear'] - candidate['deathYear'])
        if year_diff == 0:
            score += 0.10
        elif year_diff <= 2:
            score += 0.07
        elif year_diff <= 5:
            score += 0.04

    return max(0.0, min(1.0, score))


def find_potential_duplicates(
    people: list[dict[str, Any]],
    candidate: dict[str, Any],
    threshold: float = 0.60,
    exclude_ids: set[int] | None = None,
) -> list[dict[str, Any]]:
    """
    Find stored people that could be duplicates of the candidate record.

    Returns:
        list of {'person', 'similarity', 'percentage'} sorted best match first
    """
    exclude_ids = exclude_ids or set()
    candidate_summary = person_summary(candidate)
    matches = []

    for person in people:
        if person.get("id") in exclude_ids:
            continue
        score = calculate_person_similarity(person_summary(person), candidate_summary)
        if score >= threshold:
            matches.append({
                'person': person,
                'similarity': score,
                'percentage': int(score * 100)
            })

    matches.sort(key=lambda x: x['similarity'], reverse=True)
    return matches
