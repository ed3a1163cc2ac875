"""
JSON import pipelines: codex batches, family templates and the unified
importer that combines them.
"""

from .codex_import import (
    clear_codex,
    enhance_codex_entries,
    format_import_summary,
    get_import_preview,
    import_codex_data,
    normalize_codex_entries,
    preview_enhancements,
    process_codex_entries,
    strip_metadata,
    validate_codex_entries,
    validate_data_structure,
)
from .family_import import generate_import_report, process_family_import, validate_template
from .unified_import import detect_payload_types, generate_unified_report, unified_import, validate_payload

__all__ = [
    "clear_codex",
    "enhance_codex_entries",
    "format_import_summary",
    "get_import_preview",
    "import_codex_data",
    "normalize_codex_entries",
    "preview_enhancements",
    "process_codex_entries",
    "strip_metadata",
    "validate_codex_entries",
    "validate_data_structure",
    "generate_import_report",
    "process_family_import",
    "validate_template",
    "detect_payload_types",
    "generate_unified_report",
    "unified_import",
    "validate_payload",
]
