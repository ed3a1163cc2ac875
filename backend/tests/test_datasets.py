"""Tests for the dataset registry, preferences and feature flags."""

import os
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

import database
import datasets
import feature_flags
import preferences
from errors import NotFoundError


# ============================================================================
# Datasets
# ============================================================================

class TestDatasets:
    """Tests for dataset registry operations."""

    def test_ensure_default(self, data_dir):
        dataset = datasets.ensure_default_dataset()
        assert dataset["id"] == database.DEFAULT_DATASET_ID
        assert dataset["isDefault"]
        assert datasets.ensure_default_dataset()["createdAt"] == dataset["createdAt"]
        assert (data_dir / "datasets.json").exists()

    def test_create_and_list(self):
        datasets.create_dataset({"id": "north", "name": "The North"})
        datasets.create_dataset({"name": "Unnamed"})
        names = [d["name"] for d in datasets.get_all_datasets()]
        assert names == ["The North", "Unnamed"]
        assert datasets.has_datasets()

    def test_generated_id_format(self):
        dataset = datasets.create_dataset({})
        assert dataset["id"].startswith("dataset_")
        assert dataset["name"] == "Untitled Dataset"

    def test_invalid_and_duplicate_ids(self):
        with pytest.raises(ValueError):
            datasets.create_dataset({"id": "../escape"})
        datasets.create_dataset({"id": "north"})
        with pytest.raises(ValueError):
            datasets.create_dataset({"id": "north"})

    def test_update_keeps_id(self):
        datasets.create_dataset({"id": "north", "name": "North"})
        updated = datasets.update_dataset("north", {"name": "The North", "id": "south"})
        assert updated["id"] == "north"
        assert updated["name"] == "The North"
        with pytest.raises(NotFoundError):
            datasets.update_dataset("missing", {})

    def test_delete_removes_file_and_active(self, data_dir):
        """Test deleting a dataset drops its database and resets the active id."""
        datasets.create_dataset({"id": "north"})
        store = database.get_database("north")
        store.add("people", {"firstName": "Aldric"})
        datasets.set_active_dataset_id("north")
        assert (data_dir / "lineageweaver_north.db").exists()

        datasets.delete_dataset("north")

        assert not (data_dir / "lineageweaver_north.db").exists()
        assert datasets.get_dataset("north") is None
        assert datasets.get_active_dataset_id() == database.DEFAULT_DATASET_ID

    def test_default_cannot_be_deleted(self):
        datasets.ensure_default_dataset()
        with pytest.raises(ValueError):
            datasets.delete_dataset(database.DEFAULT_DATASET_ID)

    def test_active_dataset_must_exist(self):
        with pytest.raises(NotFoundError):
            datasets.set_active_dataset_id("nowhere")
        datasets.set_active_dataset_id(database.DEFAULT_DATASET_ID)
        assert datasets.get_active_dataset_id() == database.DEFAULT_DATASET_ID

    def test_datasets_are_isolated(self):
        datasets.create_dataset({"id": "north"})
        database.get_database("north").add("people", {"firstName": "Aldric"})
        assert database.get_database().count("people") == 0
        assert database.get_database("north").count("people") == 1


# ============================================================================
# Preferences
# ============================================================================

class TestPreferences:
    """Tests for persisted preferences."""

    def test_defaults(self):
        prefs = preferences.load_preferences()
        assert prefs[preferences.SHOW_DEV_PANEL_KEY] is False
        assert preferences.get_learning_mode() == "learning"

    def test_set_and_remove(self):
        preferences.set_preference(preferences.THEME_KEY, "parchment")
        assert preferences.get_preference(preferences.THEME_KEY) == "parchment"
        preferences.remove_preference(preferences.THEME_KEY)
        assert preferences.get_preference(preferences.THEME_KEY, "default") == "default"

    def test_learning_mode_validated(self):
        preferences.set_learning_mode("scholar")
        assert preferences.get_learning_mode() == "scholar"
        with pytest.raises(ValueError):
            preferences.set_learning_mode("wizard")
        with pytest.raises(ValueError):
            preferences.update_preferences({preferences.LEARNING_MODE_KEY: "wizard"})

    def test_corrupt_file_reads_as_defaults(self, data_dir):
        (data_dir / "preferences.json").write_text("{not json", encoding="utf-8")
        assert preferences.load_preferences() == preferences.DEFAULTS


# ============================================================================
# Feature Flags
# ============================================================================

class TestFeatureFlags:
    """Tests for flag lookups and runtime toggles."""

    def test_lookups(self):
        assert feature_flags.is_feature_enabled("CODEX_SYSTEM")
        assert feature_flags.is_feature_enabled("MODULE_1E.IMPORT_JSON")
        assert not feature_flags.is_feature_enabled("EXPERIMENTAL.GEDCOM_EXPORT")
        assert not feature_flags.is_feature_enabled("NOPE.NOTHING")
        # a category is not itself a flag
        assert not feature_flags.is_feature_enabled("MODULE_1E")

    def test_toggle_grouped_flag(self):
        feature_flags.toggle_feature("EXPERIMENTAL.GEDCOM_EXPORT", True)
        assert feature_flags.is_feature_enabled("EXPERIMENTAL.GEDCOM_EXPORT")
        assert "GEDCOM_EXPORT" in feature_flags.get_enabled_features("EXPERIMENTAL")

    def test_reset_restores_defaults(self):
        feature_flags.toggle_feature("EXPERIMENTAL.GEDCOM_EXPORT", True)
        feature_flags.reset_feature_flags()
        assert not feature_flags.is_feature_enabled("EXPERIMENTAL.GEDCOM_EXPORT")
        assert feature_flags.DEFAULT_FEATURE_FLAGS["EXPERIMENTAL"]["GEDCOM_EXPORT"] is False

    @pytest.mark.parametrize("path", ["CODEX_SYSTEM", "EXPERIMENTAL.NOPE", "NOPE.GEDCOM_EXPORT"])
    def test_toggle_rejected(self, path):
        with pytest.raises(ValueError):
            feature_flags.toggle_feature(path, False)

    def test_combinators(self):
        assert feature_flags.require_features(["CODEX_SYSTEM", "FAMILY_TREE"])
        assert not feature_flags.require_features(["CODEX_SYSTEM", "EXPERIMENTAL.BULK_OPERATIONS"])
        assert feature_flags.has_any_feature(["EXPERIMENTAL.BULK_OPERATIONS", "MINIMAP"])

    def test_status(self):
        status = feature_flags.get_feature_status()
        assert status["version"] == feature_flags.FEATURE_FLAGS_VERSION
        module = status["categories"]["MODULE_1E"]
        assert module["enabled"] == 5
        assert module["total"] == 6
        assert module["percentage"] == 83
        assert status["categories"]["DEPRECATED"]["percentage"] == 0
