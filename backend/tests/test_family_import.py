"""Tests for family template import and the unified importer."""

import os
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import codex_service
import genealogy
from importers import (
    detect_payload_types,
    generate_import_report,
    generate_unified_report,
    process_family_import,
    unified_import,
    validate_payload,
    validate_template,
)
from importers.family_import import resolve_id, sort_houses_by_dependency


@pytest.fixture
def template():
    return {
        "houses": [
            {"_tempId": "h-cadet", "houseName": "Wilfford", "houseType": "cadet",
             "parentHouseId": "h-main", "swornTo": "h-main", "foundedBy": "p-bran"},
            {"_tempId": "h-main", "houseName": "Wilfrey", "houseType": "main", "motto": "Stone endures"},
        ],
        "people": [
            {"_tempId": "p-aldric", "firstName": "Aldric", "lastName": "Wilfrey",
             "gender": "male", "houseId": "h-main", "dateOfBirth": "1250"},
            {"_tempId": "p-maren", "firstName": "Maren", "lastName": "Wilfrey",
             "gender": "female", "houseId": "h-main", "maidenName": "Stone"},
            {"_tempId": "p-bran", "firstName": "Bran", "lastName": "Wilfford",
             "gender": "male", "houseId": "h-cadet"},
        ],
        "relationships": [
            {"person1Id": "p-aldric", "person2Id": "p-maren", "relationshipType": "spouse"},
            {"person1Id": "p-aldric", "person2Id": "p-bran", "relationshipType": "parent"},
        ],
    }


# ============================================================================
# Family Template Tests
# ============================================================================

class TestValidateTemplate:
    """Tests for family template validation."""

    def test_valid_template(self, store, template):
        result = validate_template(store, template)
        assert result["valid"], result["errors"]
        assert result["warnings"] == []

    def test_missing_arrays(self, store):
        result = validate_template(store, {"houses": []})
        assert not result["valid"]
        assert 'Missing or invalid "people" array' in result["errors"]

    def test_unknown_references(self, store, template):
        """Test temp ids that resolve to nothing are errors."""
        template["people"][0]["houseId"] = "h-nowhere"
        template["relationships"][0]["person2Id"] = "p-ghost"
        result = validate_template(store, template)
        assert not result["valid"]
        assert any('houseId "h-nowhere" not found' in e for e in result["errors"])
        assert any('person2Id "p-ghost" not found' in e for e in result["errors"])

    def test_invalid_enums(self, store, template):
        template["people"][0]["gender"] = "dragon"
        template["relationships"][0]["relationshipType"] = "rival"
        result = validate_template(store, template)
        assert any('Invalid gender "dragon"' in e for e in result["errors"])
        assert any('Invalid relationshipType "rival"' in e for e in result["errors"])

    def test_existing_ids_reported(self, store, template):
        """Test integer refs to stored records are accepted and listed."""
        house_id = genealogy.add_house(store, {"houseName": "Marren"}, skip_codex_creation=True)
        template["people"].append({"_tempId": "p-x", "firstName": "X", "lastName": "Marren",
                                   "gender": "male", "houseId": house_id})
        result = validate_template(store, template)
        assert result["valid"]
        assert result["existingRefs"]["houses"] == [{"id": house_id, "name": "Marren"}]
        assert result["warnings"]

    def test_missing_existing_id(self, store, template):
        template["people"][0]["houseId"] = 404
        assert not validate_template(store, template)["valid"]

    def test_non_object_records(self, store):
        """Test records that are not objects are reported by index instead of crashing."""
        result = validate_template(store, {"houses": [None], "people": [1], "relationships": ["p-1"]})
        assert not result["valid"]
        assert result["errors"] == [
            "House at index 0: must be an object",
            "Person at index 0: must be an object",
            "Relationship at index 0: must be an object",
        ]

    def test_non_string_temp_id(self, store, template):
        template["houses"][1]["_tempId"] = ["h-main"]
        result = validate_template(store, template)
        assert "House at index 1: Missing or invalid _tempId" in result["errors"]

    def test_codex_entries_must_be_objects(self, store, template):
        template["codexEntries"] = ["House Wilfrey", {"_tempId": "c-1", "type": "house", "title": ["x"]}]
        result = validate_template(store, template)
        assert result["errors"] == ["Codex entry at index 0: must be an object"]

        template["codexEntries"] = [{"_tempId": "c-1", "type": "house", "title": ["x"], "_autoLink": "h-main"}]
        errors = validate_template(store, template)["errors"]
        assert 'Codex entry "c-1": Missing title' in errors
        assert 'Codex entry "c-1": _autoLink must be an object' in errors


class TestHelpers:
    """Tests for id resolution and house ordering."""

    def test_resolve_id(self):
        assert resolve_id(5, {}) == 5
        assert resolve_id("h-1", {"h-1": 9}) == 9
        assert resolve_id("h-2", {"h-1": 9}) is None
        assert resolve_id(0, {}) is None
        assert resolve_id(True, {}) is None

    def test_sort_houses_parent_first(self, template):
        ordered = [h["_tempId"] for h in sort_houses_by_dependency(template["houses"])]
        assert ordered == ["h-main", "h-cadet"]

    def test_sort_houses_tolerates_cycles(self):
        houses = [
            {"_tempId": "a", "parentHouseId": "b"},
            {"_tempId": "b", "parentHouseId": "a"},
        ]
        assert sorted(h["_tempId"] for h in sort_houses_by_dependency(houses)) == ["a", "b"]


class TestProcessFamilyImport:
    """Tests for writing a family template."""

    def test_creates_everything(self, store, template):
        result = process_family_import(store, template)

        assert result["success"], result["errors"]
        assert result["summary"] == {
            "housesCreated": 2,
            "peopleCreated": 3,
            "relationshipsCreated": 2,
            "codexEntriesCreated": 0,
        }
        # houses skip the automatic codex entry
        assert store.count("codexEntries") == 0

    def test_references_resolved(self, store, template):
        """Test temp ids become real ids, including back-patched fields."""
        result = process_family_import(store, template)
        houses = result["idMappings"]["houses"]
        people = result["idMappings"]["people"]

        cadet = genealogy.get_house(store, houses["h-cadet"])
        assert cadet["parentHouseId"] == houses["h-main"]
        assert cadet["swornTo"] == houses["h-main"]
        assert cadet["foundedBy"] == people["p-bran"]
        assert genealogy.get_person(store, people["p-bran"])["houseId"] == houses["h-cadet"]

        rel_pairs = {(r["person1Id"], r["person2Id"]) for r in genealogy.get_all_relationships(store)}
        assert (people["p-aldric"], people["p-bran"]) in rel_pairs

    def test_invalid_template_writes_nothing(self, store, template):
        template["people"][0]["houseId"] = "h-nowhere"
        result = process_family_import(store, template)
        assert not result["success"]
        assert result["summary"] is None
        assert store.count("houses") == 0
        assert store.count("people") == 0

    def test_codex_entries_with_auto_link(self, store, template):
        template["codexEntries"] = [{
            "_tempId": "c-1",
            "type": "house",
            "title": "House Wilfrey",
            "content": "Old blood.",
            "_autoLink": {"entityType": "house", "entityId": "h-main"},
        }]
        result = process_family_import(store, template)

        assert result["summary"]["codexEntriesCreated"] == 1
        entry_id = result["idMappings"]["codex"]["c-1"]
        house_id = result["idMappings"]["houses"]["h-main"]
        assert codex_service.get_entry(store, entry_id)["houseId"] == house_id
        assert genealogy.get_house(store, house_id)["codexEntryId"] == entry_id

    def test_progress_steps(self, store, template):
        steps = []
        process_family_import(store, template, on_progress=lambda p: steps.append(p["step"]))
        assert steps == ["houses", "people", "relationships", "complete"]

    def test_report(self, store, template):
        report = generate_import_report(process_family_import(store, template))
        assert report["title"] == "Import Successful"
        assert "2 house(s) created" in report["message"]

        template["people"][0]["houseId"] = "h-nowhere"
        failed = generate_import_report(process_family_import(store, template))
        assert failed["title"] == "Import Failed"


# ============================================================================
# Unified Import Tests
# ============================================================================

class TestDetectPayloadTypes:
    """Tests for payload classification."""

    def test_family_and_codex(self, template):
        payload = {**template, "codexEntries": [{"type": "event", "title": "T", "content": "C"}]}
        types = detect_payload_types(payload)
        assert types["hasFamily"]
        assert types["hasCodex"]
        assert not types["hasEnhancements"]
        assert not types["hasCategoryCodex"]

    def test_category_codex_houses_are_not_family(self):
        """Test codex-shaped houses are not mistaken for family houses."""
        payload = {"houses": [{"type": "house", "title": "House Ash", "content": "Lore."}]}
        types = detect_payload_types(payload)
        assert types["hasCategoryCodex"]
        assert not types["hasFamily"]

    def test_non_object(self):
        assert not any(detect_payload_types(["x"]).values())


class TestUnifiedImport:
    """Tests for the combined import pipeline."""

    def test_full_payload(self, store, template):
        """Test family, codex and enhancements in one payload."""
        payload = {
            "_meta": {"version": 1},
            **template,
            "codexEntries": [{
                "type": "personage",
                "title": "Aldric Wilfrey",
                "content": "Lord of Blackmount.",
                "_autoLink": {"personRef": "p-aldric"},
            }],
            "locations": [{"type": "location", "title": "Blackmount", "content": "A keep."}],
            "codexEnhancements": [{
                "targetTitle": "Blackmount",
                "appendSection": {"heading": "Legends", "content": "Ghosts."},
            }],
        }
        progress = []
        result = unified_import(payload, store=store, on_progress=progress.append)

        assert result["success"], result["errors"]
        assert result["summary"]["housesCreated"] == 2
        assert result["summary"]["peopleCreated"] == 3
        assert result["summary"]["codexEntriesCreated"] == 2
        assert result["summary"]["codexEntriesEnhanced"] == 1

        person_id = result["idMappings"]["people"]["p-aldric"]
        entry_id = result["idMappings"]["codex"]["Aldric Wilfrey"]
        assert codex_service.get_entry(store, entry_id)["personId"] == person_id
        assert "## Legends" in codex_service.find_entry_by_title(store, "Blackmount")["content"]
        assert progress[0]["phase"] == "validate"
        assert progress[-1]["percent"] == 100

    def test_invalid_payload_writes_nothing(self, store):
        payload = {"codexEntries": [{"type": "event", "title": "No content"}]}
        result = unified_import(payload, store=store)
        assert not result["success"]
        assert result["errors"]
        assert store.count("codexEntries") == 0

    def test_dry_run(self, store, template):
        result = unified_import(template, store=store, dry_run=True)
        assert result["success"]
        assert store.count("houses") == 0

    def test_duplicate_codex_skipped(self, store):
        codex_service.create_entry(store, {"type": "event", "title": "The Sundering", "content": "War."})
        payload = {"codexEntries": [
            {"type": "event", "title": "The Sundering", "content": "War."},
            {"type": "event", "title": "The Mending", "content": "Peace."},
            {"type": "event", "title": "The Mending", "content": "Peace again."},
        ]}
        result = unified_import(payload, store=store)
        assert result["summary"]["codexEntriesCreated"] == 1
        assert result["summary"]["codexEntriesSkipped"] == 1
        assert store.count("codexEntries") == 2

    def test_malformed_records_are_reported(self, store):
        """Test non-object people and non-string codex titles fail validation without writes."""
        result = unified_import({"people": [1], "relationships": []}, store=store)
        assert not result["success"]
        assert "Person at index 0: must be an object" in result["errors"]

        result = unified_import({"codexEntries": [{"type": "event", "title": {"a": 1}, "content": "War."}]}, store=store)
        assert result["errors"] == ["codexEntries[0] missing required field: title"]
        assert store.count("codexEntries") == 0
        assert store.count("people") == 0

    def test_malformed_enhancements_fail_validation(self, store):
        result = validate_payload({"codexEnhancements": [1, {"addTags": ["x"]}]}, store)
        assert result["errors"] == [
            "codexEnhancements[0] must be an object",
            "codexEnhancements[1] missing required field: targetTitle",
        ]

    def test_missing_enhancement_target_is_warning(self, store):
        payload = {"codexEnhancements": [{"targetTitle": "Nowhere", "addTags": ["x"]}]}
        result = unified_import(payload, store=store)
        assert result["success"]
        assert any("Nowhere" in w for w in result["warnings"])

    def test_empty_payload_warns(self, store):
        result = validate_payload({}, store)
        assert result["valid"]
        assert "no recognizable import data" in result["warnings"][0]

    def test_report(self, store, template):
        report = generate_unified_report(unified_import(template, store=store))
        assert "Status: SUCCESS" in report
        assert "Houses created:         2" in report
