"""
Codex encyclopedia storage.

Entries are lore articles (personages, houses, locations, events, mysteria,
concepts, heraldry, custom) with markdown content that may contain
[[wiki-links]]. Links between entries live in the codexLinks collection.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from cloud import sync_add, sync_delete, sync_update
from database import DocumentStore
from errors import NotFoundError

logger = logging.getLogger("lineageweaver.codex")

ENTRY_TYPES = ("personage", "house", "location", "event", "mysteria", "concept", "heraldry", "custom")

WIKI_LINK_STRIP = re.compile(r"\[\[.*?\]\]")
MARKDOWN_MARKS = re.compile(r"[#*_`]")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def calculate_word_count(content: str | None) -> int:
    """Count words in markdown content, ignoring wiki links and formatting marks."""
    if not content:
        return 0
    clean = MARKDOWN_MARKS.sub("", WIKI_LINK_STRIP.sub("", content)).strip()
    return len(clean.split())


# ============================================================================
# Entry operations
# ============================================================================

def create_entry(store: DocumentStore, entry_data: dict[str, Any], user_id: str | None = None) -> int:
    """
    Create a codex entry, filling defaults for optional fields.

    Returns:
        The new entry id
    """
    timestamp = now_iso()
    content = entry_data.get("content") or ""
    entry = {
        "type": entry_data.get("type"),
        "title": entry_data.get("title"),
        "subtitle": entry_data.get("subtitle") or None,
        "content": content,
        "sections": entry_data.get("sections") or [],
        "category": entry_data.get("category") or None,
        "tags": entry_data.get("tags") or [],
        "era": entry_data.get("era") or None,
        "personId": entry_data.get("personId") or None,
        "houseId": entry_data.get("houseId") or None,
        "dignityId": entry_data.get("dignityId") or None,
        "created": timestamp,
        "updated": timestamp,
        "wordCount": calculate_word_count(content),
        "version": 1,
        "changelog": [],
    }
    entry_id = store.add("codexEntries", entry)
    logger.info(f"Codex entry created: {entry['title']} (id={entry_id})")
    sync_add(user_id, store.dataset_id, "codexEntries", entry_id, entry)
    return entry_id


def get_entry(store: DocumentStore, entry_id: int) -> dict[str, Any] | None:
    return store.get("codexEntries", entry_id)


def require_entry(store: DocumentStore, entry_id: int) -> dict[str, Any]:
    entry = store.get("codexEntries", entry_id)
    if entry is None:
        raise NotFoundError("codexEntries", entry_id)
    return entry


def get_all_entries(store: DocumentStore) -> list[dict[str, Any]]:
    return store.all("codexEntries")


def get_entry_by_person_id(store: DocumentStore, person_id: int) -> dict[str, Any] | None:
    """The codex entry attached to a person, if any (first match)."""
    entries = store.where("codexEntries", "personId", person_id)
    return entries[0] if entries else None


def get_entry_by_house_id(store: DocumentStore, house_id: int) -> dict[str, Any] | None:
    entries = store.where("codexEntries", "houseId", house_id)
    return entries[0] if entries else None


def get_entry_by_dignity_id(store: DocumentStore, dignity_id: int) -> dict[str, Any] | None:
    entries = store.where("codexEntries", "dignityId", dignity_id)
    return entries[0] if entries else None


def get_entries_by_type(store: DocumentStore, entry_type: str) -> list[dict[str, Any]]:
    return store.where("codexEntries", "type", entry_type)


def get_entries_by_category(store: DocumentStore, category: str) -> list[dict[str, Any]]:
    return store.where("codexEntries", "category", category)


def get_entries_by_era(store: DocumentStore, era: str) -> list[dict[str, Any]]:
    return store.where("codexEntries", "era", era)


def get_entries_by_tag(store: DocumentStore, tag: str) -> list[dict[str, Any]]:
    return store.where("codexEntries", "tags", tag)


def search_entries_by_title(store: DocumentStore, search_term: str) -> list[dict[str, Any]]:
    """Case-insensitive substring search over titles."""
    term = search_term.lower()
    return store.filter("codexEntries", lambda e: term in (e.get("title") or "").lower())


def search_entries_full_text(store: DocumentStore, search_term: str) -> list[dict[str, Any]]:
    """Case-insensitive substring search over title, subtitle and content."""
    term = search_term.lower()

    def matches(entry: dict[str, Any]) -> bool:
        return any(
            term in (entry.get(field) or "").lower()
            for field in ("title", "subtitle", "content")
        )

    return store.filter("codexEntries", matches)


def find_entry_by_title(store: DocumentStore, title: str) -> dict[str, Any] | None:
    """Exact, then case-insensitive title match."""
    entries = store.all("codexEntries")
    for entry in entries:
        if entry.get("title") == title:
            return entry
    title_lower = title.lower()
    for entry in entries:
        if (entry.get("title") or "").lower() == title_lower:
            return entry
    return None


def update_entry(store: DocumentStore, entry_id: int, updates: dict[str, Any], user_id: str | None = None) -> int:
    """
    Update an entry, stamping 'updated' and recomputing wordCount when content changes.

    Returns:
        1 if the entry was updated, 0 if it does not exist
    """
    modified = {**updates, "updated": now_iso()}
    if "content" in updates:
        modified["wordCount"] = calculate_word_count(updates["content"])

    result = store.update("codexEntries", entry_id, modified)
    if result:
        sync_update(user_id, store.dataset_id, "codexEntries", entry_id, modified)
    return result


def delete_entry(store: DocumentStore, entry_id: int, user_id: str | None = None) -> None:
    """Delete an entry together with every link that touches it."""
    store.delete("codexEntries", entry_id)
    delete_links_for_entry(store, entry_id, user_id=user_id)
    sync_delete(user_id, store.dataset_id, "codexEntries", entry_id)
    logger.info(f"Codex entry deleted: {entry_id}")


# ============================================================================
# Link operations
# ============================================================================

def create_link(store: DocumentStore, link_data: dict[str, Any], user_id: str | None = None) -> int:
    link = {
        "sourceId": link_data.get("sourceId"),
        "targetId": link_data.get("targetId"),
        "type": link_data.get("type") or "reference",
        "label": link_data.get("label") or None,
        "bidirectional": link_data.get("bidirectional", True),
    }
    link_id = store.add("codexLinks", link)
    sync_add(user_id, store.dataset_id, "codexLinks", link_id, link)
    return link_id


def get_outgoing_links(store: DocumentStore, entry_id: int) -> list[dict[str, Any]]:
    return store.where("codexLinks", "sourceId", entry_id)


def get_incoming_links(store: DocumentStore, entry_id: int) -> list[dict[str, Any]]:
    """Backlinks: links from other entries that point at this one."""
    return store.where("codexLinks", "targetId", entry_id)


def get_all_links_for_entry(store: DocumentStore, entry_id: int) -> dict[str, list[dict[str, Any]]]:
    return {
        "outgoing": get_outgoing_links(store, entry_id),
        "incoming": get_incoming_links(store, entry_id),
    }


def delete_link(store: DocumentStore, link_id: int, user_id: str | None = None) -> None:
    store.delete("codexLinks", link_id)
    sync_delete(user_id, store.dataset_id, "codexLinks", link_id)


def delete_links_for_entry(store: DocumentStore, entry_id: int, user_id: str | None = None) -> int:
    """Delete links where the entry is source or target. Returns the count removed."""
    links = store.filter(
        "codexLinks",
        lambda link: link.get("sourceId") == entry_id or link.get("targetId") == entry_id,
    )
    for link in links:
        delete_link(store, link["id"], user_id=user_id)
    return len(links)


# ============================================================================
# Statistics
# ============================================================================

def get_codex_statistics(store: DocumentStore) -> dict[str, Any]:
    """Totals by type, total words, and the five most recently updated entries."""
    entries = store.all("codexEntries")
    by_type: dict[str, int] = {}
    total_words = 0
    for entry in entries:
        entry_type = entry.get("type") or "unknown"
        by_type[entry_type] = by_type.get(entry_type, 0) + 1
        total_words += entry.get("wordCount") or 0

    recent = sorted(entries, key=lambda e: e.get("updated") or "", reverse=True)[:5]
    return {
        "total": len(entries),
        "byType": by_type,
        "totalWords": total_words,
        "recentlyUpdated": [
            {"id": e["id"], "title": e.get("title"), "updated": e.get("updated")}
            for e in recent
        ],
    }
