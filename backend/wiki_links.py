"""[[Wiki-link]] parsing for codex content.

Links are written as [[Entry Title]] or [[Display Text|Entry Title]] and are
resolved against codex entry titles case-insensitively.
"""

import logging
import re
from typing import Any

import codex_service
from database import DocumentStore

logger = logging.getLogger("lineageweaver.wiki_links")

WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")
SENTENCE_BREAKS = ".?!"
MAX_SNIPPET_LENGTH = 200


def extract_wiki_links(markdown: str | None) -> list[dict[str, Any]]:
    """
    Extract every wiki-link reference from markdown without resolving it.

    Returns:
        List of {text, isAlias, display, search}
    """
    if not markdown:
        return []

    links = []
    for match in WIKI_LINK_PATTERN.finditer(markdown):
        text = match.group(1).strip()
        if "|" in text:
            display, search = text.split("|", 1)
            links.append({
                "text": text,
                "isAlias": True,
                "display": display.strip(),
                "search": search.strip(),
            })
        else:
            links.append({"text": text, "isAlias": False, "display": text, "search": text})
    return links


def get_context_snippet(content: str | None, target_title: str | None) -> str:
    """The sentence around the first link to target_title, stripped of markdown emphasis."""
    if not content or not target_title:
        return ""

    escaped = re.escape(target_title)
    patterns = [
        re.compile(rf"\[\[{escaped}\]\]", re.IGNORECASE),
        re.compile(rf"\[\[[^|\]]+\|{escaped}\]\]", re.IGNORECASE),
    ]
    match = None
    for pattern in patterns:
        match = pattern.search(content)
        if match:
            break
    if not match:
        return ""

    start = match.start()
    while start > 0 and content[start - 1] not in SENTENCE_BREAKS + "\n":
        start -= 1

    end = match.end()
    while end < len(content):
        char = content[end]
        if char in SENTENCE_BREAKS:
            end += 1
            break
        # paragraph break
        if char == "\n" and content[end + 1:end + 2] == "\n":
            break
        end += 1

    sentence = content[start:end].strip()
    sentence = re.sub(r"^[#\s]+", "", sentence)
    sentence = sentence.replace("**", "").replace("*", "").replace("__", "").replace("_", "").strip()

    if len(sentence) > MAX_SNIPPET_LENGTH:
        sentence = sentence[:MAX_SNIPPET_LENGTH] + "..."
    return sentence


def _title_map(store: DocumentStore) -> dict[str, dict[str, Any]]:
    return {
        (entry.get("title") or "").lower(): entry
        for entry in codex_service.get_all_entries(store)
    }


def validate_wiki_links(store: DocumentStore, markdown: str | None) -> list[str]:
    """Return the link targets in markdown that match no existing entry title."""
    links = extract_wiki_links(markdown)
    if not links:
        return []
    titles = _title_map(store)
    return [link["search"] for link in links if link["search"].lower() not in titles]


def get_suggested_entries(store: DocumentStore, partial_text: str, limit: int = 10) -> list[dict[str, Any]]:
    """Type-ahead suggestions: exact match first, then prefix matches, then substring matches."""
    if not partial_text or len(partial_text) < 2:
        return []

    search = partial_text.lower()
    matches = [
        entry for entry in codex_service.get_all_entries(store)
        if search in (entry.get("title") or "").lower()
    ]

    def rank(entry: dict[str, Any]) -> tuple[int, str]:
        title = (entry.get("title") or "").lower()
        if title == search:
            return (0, title)
        if title.startswith(search):
            return (1, title)
        return (2, title)

    return sorted(matches, key=rank)[:limit]


def sync_entry_links(store: DocumentStore, entry_id: int, user_id: str | None = None) -> dict[str, Any]:
    """
    Regenerate the wiki-reference codexLinks for an entry's content.

    Existing source/target pairs are not duplicated and self-links are ignored.
    Wiki-reference links whose target no longer appears in the content are
    deleted; manually created links of other types are left alone.

    Returns:
        {created: [link ids], removed: [link ids], broken: [unresolved targets]}
    """
    entry = codex_service.require_entry(store, entry_id)
    links = extract_wiki_links(entry.get("content"))
    titles = _title_map(store)

    outgoing = codex_service.get_outgoing_links(store, entry_id)
    existing = {(link["sourceId"], link["targetId"]) for link in outgoing}
    linked_targets: set[int] = set()
    created: list[int] = []
    removed: list[int] = []
    broken: list[str] = []

    for link in links:
        target = titles.get(link["search"].lower())
        if not target:
            broken.append(link["search"])
            continue
        linked_targets.add(target["id"])
        key = (entry_id, target["id"])
        if target["id"] == entry_id or key in existing:
            continue
        created.append(codex_service.create_link(store, {
            "sourceId": entry_id,
            "targetId": target["id"],
            "type": "wiki-reference",
            "label": link["display"] if link["display"] != target.get("title") else None,
            "bidirectional": True,
        }, user_id=user_id))
        existing.add(key)

    for stale in outgoing:
        if stale.get("type") == "wiki-reference" and stale.get("targetId") not in linked_targets:
            codex_service.delete_link(store, stale["id"], user_id=user_id)
            removed.append(stale["id"])

    if created or removed:
        logger.info(f"Wiki-links for entry {entry_id}: {len(created)} created, {len(removed)} removed")
    return {"created": created, "removed": removed, "broken": broken}
