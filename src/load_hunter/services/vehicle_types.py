"""Vehicle-type canonicalization.

Pure-function module. NO database access.

Loadboards describe the same equipment with different words ("sprinter
van", "SPRINTER", "cargo-van"). Each tenant keeps a mapping table of
(original label, canonical label) rows; this module turns those rows into a
lookup and normalizes labels before hunt-plan comparison.

Policy: unmapped labels pass through uppercased. They are never dropped.
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

# ── Vocabulary used when a tenant has no mapping rows ────────────────────

DEFAULT_CANONICAL_TYPES: tuple[str, ...] = (
    "LARGE STRAIGHT",
    "SMALL STRAIGHT",
    "CARGO VAN",
    "SPRINTER",
    "STRAIGHT",
    "FLATBED",
)


def _norm_key(label: str) -> str:
    return label.strip().lower()


class VehicleTypeCanonicalizer:
    """Lowercase original label -> uppercase canonical label."""

    def __init__(self, mappings: Optional[dict[str, str]] = None) -> None:
        self._mappings: dict[str, str] = {}
        for original, mapped_to in (mappings or {}).items():
            if original and mapped_to:
                self._mappings[_norm_key(original)] = mapped_to.strip().upper()

    @classmethod
    def from_rows(cls, rows: Iterable) -> "VehicleTypeCanonicalizer":
        """Build from mapping rows exposing ``original_value`` / ``mapped_to``.

        Rows without a ``mapped_to`` are ignored.
        """
        return cls({row.original_value: row.mapped_to for row in rows if row.mapped_to})

    @property
    def has_mappings(self) -> bool:
        return bool(self._mappings)

    def canonicalize(self, label: Optional[str]) -> str:
        """Return the canonical label for *label*, or *label* uppercased."""
        if not label:
            return ""
        mapped = self._mappings.get(_norm_key(label))
        if mapped:
            return mapped
        return label.strip().upper()

    def canonical_types(self) -> list[str]:
        """Sorted canonical vocabulary; the default one when nothing is mapped."""
        if not self._mappings:
            return list(DEFAULT_CANONICAL_TYPES)
        return sorted(set(self._mappings.values()))

    def display_types(self, sizes: Iterable[str]) -> str:
        """Format a hunt plan's desired sizes for display.

        Each size is kept when it is already canonical, or replaced with its
        mapping target when that target is canonical. If nothing resolves the
        raw sizes are joined as given.
        """
        sizes = [s for s in sizes if s]
        canonical = set(self.canonical_types())
        shown: set[str] = set()
        for size in sizes:
            upper = size.strip().upper()
            if upper in canonical:
                shown.add(upper)
                continue
            mapped = self._mappings.get(_norm_key(size))
            if mapped and mapped in canonical:
                shown.add(mapped)
        if shown:
            return ", ".join(sorted(shown))
        return ", ".join(sizes)


def parse_vehicle_sizes(raw) -> list[str]:
    """Coerce a stored ``vehicle_sizes`` value into a list of labels.

    Accepts a list, a JSON-encoded list, or a single bare label.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(s) for s in raw if s]
    if isinstance(raw, str):
        cleaned = raw.strip()
        if not cleaned:
            return []
        if cleaned.startswith("["):
            try:
                parsed = json.loads(cleaned)
            except ValueError:
                return [cleaned]
            if isinstance(parsed, list):
                return [str(s) for s in parsed if s]
        return [cleaned]
    return [str(raw)]
