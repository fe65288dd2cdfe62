"""
Import and export of user jargon packs.

Document format::

    {"version": 1, "packs": [{"id": ..., "label": ..., "terms": [...],
                              "corrections": [{"from": ..., "to": ...}]}]}
"""

import json
import logging
import typing as t
from dataclasses import dataclass, field

from dictation_pipeline.core.jargon import BUILTIN_PROFILE_IDS
from dictation_pipeline.exceptions import PackFormatError
from dictation_pipeline.models.profile import Correction, Profile, Provenance

logger = logging.getLogger(__name__)

PACK_FORMAT_VERSION = 1


@dataclass
class ImportReport:
    imported: t.List[str] = field(default_factory=list)
    skipped: t.List[t.Tuple[str, str]] = field(default_factory=list)  # (entry label, reason)

    @property
    def ok(self) -> bool:
        return not self.skipped


def profile_from_entry(entry) -> Profile:
    """
    Build a user Profile from one pack entry.

    Raises:
        ValueError: A required field is missing or empty
    """
    if not isinstance(entry, dict):
        raise ValueError("entry is not an object")
    profile_id = entry.get("id")
    label = entry.get("label")
    if not isinstance(profile_id, str) or not profile_id.strip():
        raise ValueError("missing 'id'")
    if not isinstance(label, str) or not label.strip():
        raise ValueError("missing 'label'")

    terms = entry.get("terms", [])
    corrections = entry.get("corrections", [])
    if not isinstance(terms, list) or not isinstance(corrections, list):
        raise ValueError("'terms' and 'corrections' must be lists")

    clean_terms = tuple(term.strip() for term in terms if isinstance(term, str) and term.strip())
    clean_corrections = []
    for item in corrections:
        if not isinstance(item, dict):
            continue
        source = str(item.get("from") or "").strip()
        replacement = str(item.get("to") or "").strip()
        if source and replacement:
            clean_corrections.append(Correction(source, replacement))

    return Profile(
        id=profile_id.strip(),
        label=label.strip(),
        terms=clean_terms,
        corrections=tuple(clean_corrections),
        provenance=Provenance.USER,
    )


def parse_pack_document(text) -> t.Tuple[t.List[Profile], ImportReport]:
    """
    Parse a pack document into profiles.

    Malformed entries are skipped and listed in the report. Only a document
    that is not JSON, lacks a ``packs`` list, or has an unsupported version
    raises.

    Raises:
        PackFormatError: The document as a whole cannot be read
    """
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as e:
        raise PackFormatError(f"Pack document is not valid JSON: {e}") from e
    if not isinstance(document, dict) or not isinstance(document.get("packs"), list):
        raise PackFormatError("Pack document must be an object with a 'packs' list")
    version = document.get("version", PACK_FORMAT_VERSION)
    if version != PACK_FORMAT_VERSION:
        raise PackFormatError(f"Unsupported pack format version {version!r}")

    report = ImportReport()
    profiles = []
    seen = set()
    for position, entry in enumerate(document["packs"]):
        name = entry.get("id") if isinstance(entry, dict) and entry.get("id") else f"#{position}"
        try:
            profile = profile_from_entry(entry)
        except ValueError as e:
            report.skipped.append((str(name), str(e)))
            logger.warning(f"Skipping pack {name}: {e}")
            continue
        if profile.id in seen:
            report.skipped.append((profile.id, "duplicate id in document"))
            logger.warning(f"Skipping pack {profile.id}: duplicate id in document")
            continue
        if profile.id in BUILTIN_PROFILE_IDS:
            report.skipped.append((profile.id, "id collides with a built-in profile"))
            logger.warning(f"Skipping pack {profile.id}: id collides with a built-in profile")
            continue
        seen.add(profile.id)
        profiles.append(profile)
        report.imported.append(profile.id)
    return profiles, report


def merge_packs(existing: t.Iterable[Profile], imported: t.Iterable[Profile], replace_existing=False) -> t.List[Profile]:
    """Combine imported packs with existing ones. Imported packs win on id clashes."""
    merged = {} if replace_existing else {p.id: p for p in existing}
    for profile in imported:
        merged[profile.id] = profile
    return sorted(merged.values(), key=lambda p: p.id)


def export_pack_document(profiles: t.Iterable[Profile], selected_ids=None) -> str:
    """Serialize user profiles (optionally only ``selected_ids``) as a version 1 document."""
    wanted = set(selected_ids) if selected_ids is not None else None
    packs = [
        p.to_pack_entry()
        for p in sorted(profiles, key=lambda p: p.id)
        if not p.is_builtin and (wanted is None or p.id in wanted)
    ]
    return json.dumps({"version": PACK_FORMAT_VERSION, "packs": packs}, indent=2, ensure_ascii=False)
