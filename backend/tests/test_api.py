"""Tests for the HTTP API using FastAPI's TestClient."""

import os
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading
import time

import httpx
import pytest
from fastapi.testclient import TestClient

import preferences
from cloud import CloudClient, set_cloud_client
from main import app

MINI_GEDCOM = """0 HEAD
1 CHAR UTF-8
0 @I1@ INDI
1 NAME Aldric /Wilfrey/
1 SEX M
1 BIRT
2 DATE 1250
1 FAMS @F1@
0 @I2@ INDI
1 NAME Bran /Wilfrey/
1 SEX M
1 FAMC @F1@
0 @F1@ FAM
1 HUSB @I1@
1 CHIL @I2@
0 TRLR"""


@pytest.fixture
def client(data_dir):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def house(client):
    response = client.post("/houses", json={"houseName": "Wilfrey", "colorCode": "#334455"})
    assert response.status_code == 201
    return response.json()


def add_person(client, first, house_id=None, **extra):
    response = client.post("/people", json={
        "firstName": first, "lastName": "Wilfrey", "gender": "male", "houseId": house_id, **extra,
    })
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# Genealogy Endpoints
# ============================================================================

class TestGenealogyApi:
    """Tests for houses, people, relationships and trees."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["activeDataset"] == "default"

    def test_house_created_with_codex_entry(self, client, house):
        assert house["codexEntryId"]
        entry = client.get(f"/codex/{house['codexEntryId']}").json()["entry"]
        assert entry["title"] == "House Wilfrey"

    def test_missing_records_are_404(self, client):
        assert client.get("/houses/99").status_code == 404
        assert client.get("/people/99").status_code == 404
        assert client.get("/tree/99").status_code == 404

    def test_person_requires_existing_house(self, client):
        response = client.post("/people", json={"firstName": "A", "lastName": "B", "gender": "male", "houseId": 42})
        assert response.status_code == 404

    def test_person_validation(self, client):
        response = client.post("/people", json={"firstName": "A", "lastName": "B", "gender": "dragon"})
        assert response.status_code == 422

    def test_duplicate_check(self, client, house):
        add_person(client, "Aldric", house["id"], dateOfBirth="1250")
        candidate = {"firstName": "Aldric", "lastName": "Wilfrey", "gender": "male", "dateOfBirth": "1250"}

        body = client.post("/people/duplicates", json=candidate).json()
        assert body["count"] == 1
        assert body["matches"][0]["person"]["firstName"] == "Aldric"

        stranger = {"firstName": "Zed", "lastName": "Quill", "gender": "female"}
        assert client.post("/people/duplicates", json=stranger).json()["count"] == 0

    def test_extra_fields_round_trip(self, client, house):
        person = add_person(client, "Aldric", house["id"], species="human")
        assert person["species"] == "human"
        assert client.get(f"/people?houseId={house['id']}").json()["people"][0]["id"] == person["id"]

    def test_relationship_and_tree(self, client, house):
        aldric = add_person(client, "Aldric", house["id"])
        bran = add_person(client, "Bran", house["id"])
        response = client.post("/relationships", json={
            "person1Id": aldric["id"], "person2Id": bran["id"], "relationshipType": "parent",
        })
        assert response.status_code == 201

        tree = client.get(f"/tree/{bran['id']}").json()["tree"]
        assert [a["firstName"] for a in tree["ancestors"]] == ["Aldric"]
        assert [r["firstName"] for r in client.get("/tree").json()["roots"]] == ["Aldric"]

    def test_circular_parent_rejected(self, client, house):
        aldric = add_person(client, "Aldric", house["id"])
        bran = add_person(client, "Bran", house["id"])
        client.post("/relationships", json={"person1Id": aldric["id"], "person2Id": bran["id"], "relationshipType": "parent"})

        response = client.post("/relationships", json={
            "person1Id": bran["id"], "person2Id": aldric["id"], "relationshipType": "parent",
        })
        assert response.status_code == 400
        assert "circular ancestry" in response.json()["detail"]

    def test_delete_person_cascades(self, client, house):
        aldric = add_person(client, "Aldric", house["id"])
        bran = add_person(client, "Bran", house["id"])
        client.post("/relationships", json={"person1Id": aldric["id"], "person2Id": bran["id"], "relationshipType": "parent"})

        response = client.delete(f"/people/{aldric['id']}")
        assert len(response.json()["relationshipsRemoved"]) == 1
        assert client.get("/relationships").json()["relationships"] == []

    def test_ceremony(self, client, house):
        founder = add_person(client, "Bran", house["id"], dateOfBirth="1990-01-01")
        response = client.post("/manage/ceremony", json={
            "founderId": founder["id"], "parentHouseId": house["id"], "houseName": "Wilfford",
        })
        assert response.status_code == 201
        assert response.json()["house"]["houseType"] == "cadet"
        assert response.json()["founder"]["lastName"] == "Wilfford"

    def test_ceremony_ineligible(self, client, house):
        child = add_person(client, "Cole", house["id"])
        response = client.post("/manage/ceremony", json={
            "founderId": child["id"], "parentHouseId": house["id"], "houseName": "X",
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "No birth date recorded"

    def test_destructive_endpoints_need_confirm(self, client, house):
        assert client.delete("/manage/all").status_code == 400
        assert client.delete("/manage/genealogy?confirm=true").status_code == 200
        assert client.get("/houses").json()["houses"] == []
        # the house's codex entry survives a genealogy-only delete
        assert client.get("/codex").json()["entries"]

    def test_cadet_name_suggestions(self, client, house):
        suggestions = client.get(f"/houses/{house['id']}/cadet-name-suggestions").json()["suggestions"]
        assert suggestions
        assert all(isinstance(s, str) for s in suggestions)


# ============================================================================
# Codex Endpoints
# ============================================================================

class TestCodexApi:
    """Tests for codex entries, links and imports."""

    def test_create_syncs_wiki_links(self, client):
        client.post("/codex", json={"type": "location", "title": "Blackmount", "content": "A keep."})
        response = client.post("/codex", json={
            "type": "event", "title": "The Siege", "content": "They marched on [[Blackmount]] and [[Nowhere]].",
        })
        assert response.status_code == 201
        body = response.json()
        assert len(body["links"]["created"]) == 1
        assert body["links"]["broken"] == ["Nowhere"]

    def test_backlinks_carry_snippets(self, client):
        target = client.post("/codex", json={"type": "location", "title": "Blackmount"}).json()["entry"]
        client.post("/codex", json={"type": "event", "title": "The Siege", "content": "They marched on [[Blackmount]]."})

        links = client.get(f"/codex/{target['id']}/links").json()
        (backlink,) = links["incoming"]
        assert backlink["sourceTitle"] == "The Siege"
        assert backlink["snippet"] == "They marched on [[Blackmount]]."

    def test_unresolved_links_reported(self, client):
        entry = client.post("/codex", json={"type": "event", "title": "T", "content": "[[Nowhere]]"}).json()["entry"]
        assert client.get(f"/codex/{entry['id']}").json()["unresolvedLinks"] == ["Nowhere"]

    def test_search(self, client):
        client.post("/codex", json={"type": "location", "title": "Blackmount", "content": "cold stone"})
        assert len(client.get("/codex?q=black").json()["entries"]) == 1
        assert len(client.get("/codex?q=stone&fullText=true").json()["entries"]) == 1
        assert client.get("/codex/suggest?q=bl").json()["suggestions"][0]["title"] == "Blackmount"

    def test_import_invalid_payload(self, client):
        response = client.post("/codex/import", json={"houses": [{"type": "house", "title": "No content"}]})
        assert response.status_code == 400
        assert response.json()["errors"] == ["houses[0] missing required field: content"]

    def test_import_non_string_title(self, client):
        response = client.post("/codex/import", json={"houses": [{"type": "house", "title": ["A"], "content": "x"}]})
        assert response.status_code == 400
        assert response.json()["errors"] == ["houses[0] missing required field: title"]

    def test_edit_removes_stale_backlink(self, client):
        target = client.post("/codex", json={"type": "location", "title": "Blackmount"}).json()["entry"]
        source = client.post("/codex", json={"type": "event", "title": "The Siege", "content": "On [[Blackmount]]."}).json()["entry"]

        response = client.patch(f"/codex/{source['id']}", json={"content": "They went home."})

        assert len(response.json()["links"]["removed"]) == 1
        assert client.get(f"/codex/{target['id']}/links").json()["incoming"] == []

    def test_import_malformed_json(self, client):
        response = client.post("/codex/import", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_import_and_rerun(self, client):
        payload = {"locations": [{"type": "location", "title": "Blackmount", "content": "Cold."}]}
        first = client.post("/codex/import", json=payload).json()
        second = client.post("/codex/import", json=payload).json()
        assert len(first["locations"]) == 1
        assert len(second["locations"]) == 0
        assert len(second["skipped"]) == 1

    def test_enhance_dry_run(self, client):
        client.post("/codex", json={"type": "location", "title": "Blackmount", "content": "Cold."})
        enhancement = [{"targetTitle": "Blackmount", "addTags": ["haunted"]}]
        assert client.post("/codex/enhance?dryRun=true", json=enhancement).json()["enhanced"][0]["dryRun"]
        assert client.post("/codex/enhance", json=enhancement).json()["enhanced"]

    def test_clear_codex(self, client):
        client.post("/codex", json={"type": "location", "title": "Blackmount"})
        assert client.delete("/codex").status_code == 400
        assert client.delete("/codex?confirm=true").status_code == 200
        assert client.get("/codex/statistics").json()["total"] == 0


# ============================================================================
# Import and GEDCOM Endpoints
# ============================================================================

class TestImportApi:
    """Tests for unified and GEDCOM imports."""

    def test_unified_import(self, client):
        payload = {
            "houses": [{"_tempId": "h-1", "houseName": "Wilfrey"}],
            "people": [{"_tempId": "p-1", "firstName": "Aldric", "lastName": "Wilfrey",
                        "gender": "male", "houseId": "h-1"}],
            "relationships": [],
        }
        result = client.post("/import", json=payload).json()
        assert result["success"]
        assert result["summary"]["peopleCreated"] == 1

    def test_unified_import_invalid(self, client):
        response = client.post("/import", json={"codexEntries": [{"type": "event"}]})
        assert response.status_code == 400
        assert response.json()["errors"]

    def test_unified_import_non_object_records(self, client):
        response = client.post("/import", json={"people": [1], "relationships": []})
        assert response.status_code == 400
        assert "Person at index 0: must be an object" in response.json()["errors"]

    def test_validate(self, client):
        assert client.post("/import/validate", json={}).json()["valid"]

    def test_gedcom_import_and_export(self, client):
        response = client.post(
            "/import/gedcom",
            files={"file": ("family.ged", MINI_GEDCOM.encode("utf-8"), "text/plain")},
        )
        assert response.status_code == 200, response.text
        summary = response.json()["summary"]
        assert summary["peopleCreated"] == 2
        assert summary["relationshipsCreated"] == 1

        exported = client.get("/export/gedcom").text
        assert exported.startswith("0 HEAD")
        assert "Aldric /Wilfrey/" in exported

    def test_gedcom_wrong_extension(self, client):
        response = client.post("/import/gedcom", files={"file": ("family.txt", b"0 HEAD", "text/plain")})
        assert response.status_code == 400


# ============================================================================
# Dignity and Heraldry Endpoints
# ============================================================================

class TestDignityHeraldryApi:
    """Tests for dignities, tenures and arms."""

    def test_dignity_detail(self, client, house):
        holder = add_person(client, "Edmund", house["id"])
        crown = client.post("/dignities", json={"name": "The Crown", "dignityClass": "crown"}).json()
        dignity = client.post("/dignities", json={
            "name": "Knight of the Vale", "dignityClass": "sir", "dignityRank": "sir",
            "dignityNature": "personal-honour", "currentHolderId": holder["id"], "swornToId": crown["id"],
        }).json()
        assert dignity["isHereditary"] is False

        tenure = client.post(f"/dignities/{dignity['id']}/tenures", json={"personId": holder["id"], "dateStarted": "1280"})
        assert tenure.status_code == 201

        detail = client.get(f"/dignities/{dignity['id']}").json()
        assert detail["displayTitle"] == "Sir Edmund Wilfrey, Knight of the Vale"
        assert detail["currentTenure"]["dateStarted"] == "1280"
        assert [d["name"] for d in detail["feudalChain"]] == ["Knight of the Vale", "The Crown"]
        assert client.get(f"/people/{holder['id']}/dignities").json()["held"][0]["id"] == dignity["id"]

    def test_dignity_invalid_nature(self, client):
        assert client.post("/dignities", json={"name": "X", "dignityNature": "divine"}).status_code == 422

    def test_tenure_for_missing_person(self, client):
        dignity = client.post("/dignities", json={"name": "Lord of Blackmount"}).json()
        response = client.post(f"/dignities/{dignity['id']}/tenures", json={"personId": 99})
        assert response.status_code == 404

    def test_personal_arms(self, client, house):
        person = add_person(client, "Bran", house["id"])
        arms = client.post("/heraldry", json={"name": "Arms of Wilfrey", "blazon": "Azure"}).json()
        client.post(f"/heraldry/{arms['id']}/links", json={"entityType": "house", "entityId": house["id"]})
        assert client.get(f"/houses/{house['id']}").json()["house"]["heraldryId"] == arms["id"]

        response = client.post(f"/people/{person['id']}/arms", json={"houseHeraldryId": arms["id"], "birthPosition": 2})
        assert response.status_code == 201
        assert client.get(f"/people/{person['id']}/arms").json()["arms"]["category"] == "personal"


# ============================================================================
# Datasets, Preferences and Features
# ============================================================================

class TestSettingsApi:
    """Tests for dataset, preference and feature endpoints."""

    def test_default_dataset_exists(self, client):
        body = client.get("/datasets").json()
        assert [d["id"] for d in body["datasets"]] == ["default"]
        assert body["activeDatasetId"] == "default"

    def test_dataset_scoping(self, client):
        client.post("/datasets", json={"id": "north", "name": "The North"})
        client.post("/houses?datasetId=north", json={"houseName": "Stark"})
        assert len(client.get("/houses?datasetId=north").json()["houses"]) == 1
        assert client.get("/houses").json()["houses"] == []

        client.put("/datasets/active", json={"datasetId": "north"})
        assert len(client.get("/houses").json()["houses"]) == 1

    def test_unknown_dataset(self, client):
        assert client.get("/houses?datasetId=nowhere").status_code == 404
        assert client.put("/datasets/active", json={"datasetId": "nowhere"}).status_code == 404

    def test_delete_dataset(self, client):
        client.post("/datasets", json={"id": "north", "name": "The North"})
        assert client.delete("/datasets/north").status_code == 400
        assert client.delete("/datasets/north?confirm=true").status_code == 200
        assert client.get("/datasets/north").status_code == 404
        assert client.delete("/datasets/default?confirm=true").status_code == 400

    def test_preferences(self, client):
        response = client.patch("/preferences", json={preferences.LEARNING_MODE_KEY: "scholar"})
        assert response.json()[preferences.LEARNING_MODE_KEY] == "scholar"
        assert client.patch("/preferences", json={preferences.LEARNING_MODE_KEY: "wizard"}).status_code == 400
        assert client.patch("/preferences", json=["not", "an", "object"]).status_code == 400

    def test_feature_toggle_requires_dev_panel(self, client):
        toggle = {"path": "EXPERIMENTAL.GEDCOM_EXPORT", "enabled": True}
        assert client.post("/features/toggle", json=toggle).status_code == 403

        client.patch("/preferences", json={preferences.SHOW_DEV_PANEL_KEY: True})
        assert client.post("/features/toggle", json=toggle).json()["enabled"] is True
        assert client.get("/features/EXPERIMENTAL.GEDCOM_EXPORT").json()["enabled"] is True
        assert client.post("/features/toggle", json={"path": "CODEX_SYSTEM", "enabled": False}).status_code == 400

    def test_audits_and_migrations(self, client, house):
        add_person(client, "Aldric", house["id"])
        assert client.get("/audit/integrity").json()["healthy"]
        assert client.get("/audit/duplicates").json()["count"] == 0
        assert client.get("/audit/bastard-names").json()["count"] == 0
        assert client.post("/migrations").json()["success"]
        assert not client.get("/migrations").json()["houses"]["needsMigration"]

    def test_sync_skipped_without_user(self, client):
        assert client.post("/manage/sync").json() == {"status": "skipped", "reason": "no-user"}


# ============================================================================
# Cloud Mirroring
# ============================================================================

class TestCloudMirroringApi:
    """Tests for writes that mirror to a slow cloud store."""

    def test_slow_cloud_does_not_block_other_requests(self, client):
        """Test a write stuck on the cloud leaves the server free to answer."""
        entered = threading.Event()
        release = threading.Event()

        def stalled_cloud(request):
            entered.set()
            release.wait(timeout=5)
            return httpx.Response(200, json={"ok": True})

        set_cloud_client(CloudClient(
            "https://cloud.example/api",
            transport=httpx.MockTransport(stalled_cloud),
            retry_options={"max_retries": 0},
        ))

        responses = []
        writer = threading.Thread(target=lambda: responses.append(
            client.post("/houses", json={"houseName": "Wilfrey"}, headers={"X-User-Id": "u1"})
        ))
        writer.start()
        try:
            assert entered.wait(timeout=5)
            started = time.monotonic()
            health = client.get("/health")
            elapsed = time.monotonic() - started
        finally:
            release.set()
            writer.join(timeout=10)

        assert health.status_code == 200
        assert elapsed < 2.0
        assert responses[0].status_code == 201
