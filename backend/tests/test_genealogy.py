"""Tests for people, houses, relationships, family trees and integrity checks."""

import os
import sys
from datetime import date

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import codex_service
import genealogy
from data_integrity import (
    detect_circular_ancestry,
    find_orphaned_records,
    run_integrity_check,
    validate_bidirectional_relationships,
    validate_parent_child_relationship,
    check_dataset_integrity,
)
from errors import NotFoundError
from family_tree import build_bidirectional_tree, find_root_ancestors

TODAY = date(2026, 1, 1)


@pytest.fixture
def family(store):
    """Three generations: Aldric + Maren -> Bran -> Cole."""
    house_id = genealogy.add_house(store, {"houseName": "Wilfrey", "colorCode": "#334455"}, skip_codex_creation=True)
    ids = {"house": house_id}
    for key, first, gender, born in (
        ("aldric", "Aldric", "male", "1950"),
        ("maren", "Maren", "female", "1952"),
        ("bran", "Bran", "male", "1980-04-02"),
        ("cole", "Cole", "male", "2005"),
    ):
        ids[key] = genealogy.add_person(store, {
            "firstName": first, "lastName": "Wilfrey", "gender": gender,
            "dateOfBirth": born, "houseId": house_id, "legitimacyStatus": "legitimate",
        })
    genealogy.add_relationship(store, {"person1Id": ids["aldric"], "person2Id": ids["maren"], "relationshipType": "spouse"})
    genealogy.add_relationship(store, {"person1Id": ids["aldric"], "person2Id": ids["bran"], "relationshipType": "parent"})
    genealogy.add_relationship(store, {"person1Id": ids["maren"], "person2Id": ids["bran"], "relationshipType": "parent"})
    genealogy.add_relationship(store, {"person1Id": ids["bran"], "person2Id": ids["cole"], "relationshipType": "parent-child"})
    return ids


# ============================================================================
# People, Houses and Relationships
# ============================================================================

class TestRecords:
    """Tests for record CRUD and cascades."""

    def test_add_house_creates_codex_entry(self, store):
        house_id = genealogy.add_house(store, {"houseName": "Marren", "houseType": "cadet"})
        house = genealogy.get_house(store, house_id)
        entry = codex_service.get_entry(store, house["codexEntryId"])
        assert entry["title"] == "House Marren"
        assert entry["subtitle"] == "Cadet Branch"
        assert entry["houseId"] == house_id

    def test_delete_house_removes_codex_entry(self, store):
        house_id = genealogy.add_house(store, {"houseName": "Marren"})
        genealogy.delete_house(store, house_id)
        assert genealogy.get_house(store, house_id) is None
        assert codex_service.get_entry_by_house_id(store, house_id) is None

    def test_delete_person_cascades_relationships(self, store, family):
        removed = genealogy.delete_person(store, family["bran"])
        assert len(removed) == 3
        remaining = genealogy.get_all_relationships(store)
        assert [r["relationshipType"] for r in remaining] == ["spouse"]

    def test_require_missing(self, store):
        with pytest.raises(NotFoundError):
            genealogy.require_person(store, 404)

    def test_people_by_house(self, store, family):
        assert len(genealogy.get_people_by_house(store, family["house"])) == 4

    def test_named_after(self, store, family):
        genealogy.add_relationship(store, {
            "person1Id": family["cole"], "person2Id": family["aldric"], "relationshipType": "named-after",
        })
        assert len(genealogy.get_named_after_relationships(store, family["cole"])["namedAfter"]) == 1
        assert len(genealogy.get_named_after_relationships(store, family["aldric"])["namesakes"]) == 1

    def test_delete_genealogy_keeps_codex(self, store, family):
        codex_service.create_entry(store, {"type": "event", "title": "The Sundering", "content": ""})
        genealogy.delete_genealogy_data(store)
        assert store.count("people") == 0
        assert store.count("codexEntries") == 1

        genealogy.delete_all_data(store)
        assert store.count("codexEntries") == 0


# ============================================================================
# Cadet House Ceremony
# ============================================================================

class TestCeremony:
    """Tests for eligibility and founding cadet houses."""

    def test_calculate_age(self):
        assert genealogy.calculate_age("2000-06-15", date(2026, 6, 14)) == 25
        assert genealogy.calculate_age("2000-06-15", date(2026, 6, 15)) == 26
        assert genealogy.calculate_age("2000", TODAY) == 26
        assert genealogy.calculate_age(None) is None
        assert genealogy.calculate_age("long ago") is None

    def test_legitimate_adult_is_tier_one(self):
        person = {"dateOfBirth": "1990", "legitimacyStatus": "legitimate", "houseId": 1}
        assert genealogy.is_eligible_for_ceremony(person, TODAY) == {"eligible": True, "tier": 1, "reason": None}

    def test_bastard_adult_is_tier_two(self):
        person = {"dateOfBirth": "1990", "legitimacyStatus": "bastard"}
        assert genealogy.is_eligible_for_ceremony(person, TODAY)["tier"] == 2

    @pytest.mark.parametrize("person,reason", [
        ({}, "No birth date recorded"),
        ({"dateOfBirth": "2015", "legitimacyStatus": "legitimate", "houseId": 1}, "Must be at least 18 (currently 11)"),
        ({"dateOfBirth": "1990", "legitimacyStatus": "bastard", "bastardStatus": "founded"}, "Already founded a cadet house"),
        ({"dateOfBirth": "1990", "legitimacyStatus": "bastard", "bastardStatus": "legitimized"}, "Has been legitimized"),
        ({"dateOfBirth": "1990", "legitimacyStatus": "legitimate"}, "Must belong to a noble house"),
        ({"dateOfBirth": "1990", "legitimacyStatus": "adopted"}, "Cannot found house with status: adopted"),
    ])
    def test_ineligible(self, person, reason):
        result = genealogy.is_eligible_for_ceremony(person, TODAY)
        assert not result["eligible"]
        assert result["reason"] == reason

    def test_found_noble_cadet_house(self, store, family):
        result = genealogy.found_cadet_house(store, {
            "founderId": family["bran"],
            "parentHouseId": family["house"],
            "houseName": "Wilfford",
            "ceremonyDate": "2010",
        })
        house = result["house"]
        assert house["houseType"] == "cadet"
        assert house["cadetTier"] == 1
        assert house["foundingType"] == "noble"
        assert house["swornTo"] == family["house"]
        assert house["namePrefix"] == "Wilf"
        assert house["colorCode"] == "#334455"
        assert result["founder"]["houseId"] == house["id"]
        assert result["founder"]["lastName"] == "Wilfford"
        assert codex_service.get_entry_by_house_id(store, house["id"]) is not None

    def test_found_bastard_cadet_house(self, store, family):
        bastard = genealogy.add_person(store, {
            "firstName": "Jory", "lastName": "Stone", "gender": "male",
            "dateOfBirth": "1990", "legitimacyStatus": "bastard",
        })
        result = genealogy.found_cadet_house(store, {
            "founderId": bastard, "parentHouseId": family["house"], "houseName": "Stonewill",
        })
        assert result["house"]["cadetTier"] == 2
        assert result["house"]["foundingType"] == "bastard-elevation"
        assert result["founder"]["bastardStatus"] == "founded"
        assert result["founder"]["legitimacyStatus"] == "legitimate"

    def test_found_missing_parent_house(self, store, family):
        with pytest.raises(NotFoundError):
            genealogy.found_cadet_house(store, {"founderId": family["bran"], "parentHouseId": 99, "houseName": "X"})


# ============================================================================
# Duplicates
# ============================================================================

class TestDuplicates:
    """Tests for duplicate detection and acknowledged namesakes."""

    @pytest.fixture
    def twins(self, store):
        record = {"firstName": "Aldric", "lastName": "Wilfrey", "gender": "male",
                  "dateOfBirth": "1250", "dateOfDeath": "1301", "birthPlace": "Blackmount"}
        return genealogy.add_person(store, dict(record)), genealogy.add_person(store, dict(record))

    def test_identical_people_found(self, store, twins):
        matches = genealogy.find_potential_duplicate_people(store)
        assert len(matches) == 1
        assert matches[0]["similarity"] == pytest.approx(1.0)

    def test_acknowledged_pair_is_skipped(self, store, twins):
        a, b = twins
        assert genealogy.acknowledge_duplicate(store, b, a) is not None
        assert genealogy.acknowledge_duplicate(store, a, b) is None
        assert genealogy.is_acknowledged_duplicate(store, a, b)
        assert genealogy.find_potential_duplicate_people(store) == []

        genealogy.remove_acknowledged_duplicate(store, a, b)
        assert genealogy.get_all_acknowledged_duplicates(store) == []
        assert len(genealogy.find_potential_duplicate_people(store)) == 1

    def test_threshold(self, store):
        genealogy.add_person(store, {"firstName": "Aldric", "lastName": "Wilfrey"})
        genealogy.add_person(store, {"firstName": "Maren", "lastName": "Stone"})
        assert genealogy.find_potential_duplicate_people(store, threshold=0.8) == []

    def test_duplicates_of_new_record(self, store, twins):
        """Test an unsaved record is matched against stored people, skipping itself."""
        a, b = twins
        candidate = {"firstName": "Aldric", "lastName": "Wilfrey", "gender": "male", "dateOfBirth": "1250"}
        assert {m["person"]["id"] for m in genealogy.find_duplicates_of(store, candidate)} == {a, b}

        stored = genealogy.get_person(store, a)
        assert [m["person"]["id"] for m in genealogy.find_duplicates_of(store, stored)] == [b]


# ============================================================================
# Family Tree
# ============================================================================

class TestFamilyTree:
    """Tests for tree building."""

    def test_tree_around_middle_generation(self, store, family):
        tree = build_bidirectional_tree(store, family["bran"])

        assert tree["direction"] == "root"
        assert tree["fullName"] == "Bran Wilfrey"
        assert tree["birthYear"] == 1980
        assert sorted(a["firstName"] for a in tree["ancestors"]) == ["Aldric", "Maren"]
        assert [d["firstName"] for d in tree["descendants"]] == ["Cole"]
        assert "spouses" not in tree

    def test_depth_limit(self, store, family):
        tree = build_bidirectional_tree(store, family["aldric"], descendant_depth=1)
        (bran,) = tree["descendants"]
        assert "children" not in bran
        assert [s["firstName"] for s in tree["spouses"]] == ["Maren"]

    def test_cycle_terminates(self, store, family):
        genealogy.add_relationship(store, {"person1Id": family["cole"], "person2Id": family["aldric"], "relationshipType": "parent"})
        tree = build_bidirectional_tree(store, family["aldric"], ancestor_depth=10, descendant_depth=10)
        assert tree["descendants"]

    def test_missing_person(self, store):
        with pytest.raises(NotFoundError):
            build_bidirectional_tree(store, 404)

    def test_root_ancestors(self, store, family):
        assert sorted(p["firstName"] for p in find_root_ancestors(store)) == ["Aldric", "Maren"]


# ============================================================================
# Data Integrity
# ============================================================================

class TestDataIntegrity:
    """Tests for ancestry validation and integrity checks."""

    RELS = [
        {"id": 1, "person1Id": 1, "person2Id": 2, "relationshipType": "parent"},
        {"id": 2, "person1Id": 2, "person2Id": 3, "relationshipType": "parent-child"},
    ]

    def test_circular_ancestry(self):
        result = detect_circular_ancestry(1, 3, self.RELS)
        assert result == {"isCircular": True, "path": [3, 2, 1]}
        assert not detect_circular_ancestry(3, 1, self.RELS)["isCircular"]
        assert detect_circular_ancestry(5, 5, [])["isCircular"]

    def test_validate_parent_child(self):
        assert not validate_parent_child_relationship(4, 4, self.RELS)["valid"]
        assert "already exists" in validate_parent_child_relationship(1, 2, self.RELS)["error"]
        assert "circular ancestry" in validate_parent_child_relationship(3, 1, self.RELS)["error"]
        assert validate_parent_child_relationship(4, 3, self.RELS) == {"valid": True, "error": None}

    def test_orphans(self):
        orphans = find_orphaned_records({
            "people": [{"id": 1, "firstName": "A", "lastName": "B", "houseId": 9}],
            "houses": [],
            "relationships": [{"id": 5, "person1Id": 1, "person2Id": 2}],
            "codexEntries": [{"id": 1}],
            "codexLinks": [{"id": 3, "sourceId": 1, "targetId": 8}],
        })
        assert orphans["relationships"] == [{"id": 5, "missingPerson1": None, "missingPerson2": 2}]
        assert orphans["peopleWithMissingHouse"][0]["missingHouseId"] == 9
        assert orphans["codexLinks"] == [{"id": 3, "missingSource": None, "missingTarget": 8}]

    def test_marriage_date_mismatch(self):
        rels = [
            {"id": 1, "person1Id": 1, "person2Id": 2, "relationshipType": "spouse", "marriageDate": "1270"},
            {"id": 2, "person1Id": 2, "person2Id": 1, "relationshipType": "spouse", "marriageDate": "1271"},
        ]
        issues = validate_bidirectional_relationships(rels)
        assert len(issues) == 1
        assert issues[0]["type"] == "marriage-date-mismatch"

    def test_integrity_check(self):
        report = run_integrity_check({"people": [], "relationships": self.RELS + [
            {"id": 3, "person1Id": 3, "person2Id": 1, "relationshipType": "parent"},
        ]})
        assert not report["healthy"]
        assert report["summary"]["totalCircularIssues"] == 3
        assert report["summary"]["totalOrphanedRelationships"] == 3

    def test_dataset_integrity_healthy(self, store, family):
        report = check_dataset_integrity(store)
        assert report["healthy"], report["issues"]
