from __future__ import annotations

"""Career catalog loader.

The catalog is static reference data: it is read once when the app starts and
rendered in full into every chat prompt. Career names double as the validation
set for suggestions returned by the model.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Tuple

from .models import CareerEntry

logger = logging.getLogger("vocational.catalog")


@dataclass(frozen=True)
class CatalogMeta:
    """Metadata describing the catalog file version for logging."""
    file_name: str
    updated_at: str
    sha256: str


@dataclass(frozen=True)
class CareerCatalog:
    """Immutable, ordered list of careers with a name lookup set."""
    entries: Tuple[CareerEntry, ...]

    @property
    def names(self) -> FrozenSet[str]:
        return frozenset(entry.name for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


class CatalogLoader:
    def __init__(self, path: Path) -> None:
        """Purpose: Configure the loader with a catalog file path.
        Inputs/Outputs: Input is a Path to careers.json; no return value.
        Side Effects / State: Stores the path for later load calls.
        Failure Modes: None at init; load() surfaces read/parse errors.
        """
        self._path = path

    def load(self) -> Tuple[CareerCatalog, CatalogMeta]:
        """Purpose: Load and normalize career records from the catalog file.
        Inputs/Outputs: No inputs; returns a CareerCatalog and CatalogMeta.
        Side Effects / State: Reads file contents and computes hash/mtime.
        Dependencies: Uses json, hashlib, and _normalize_entry.
        Failure Modes: Missing file or JSON decode errors raise to the caller;
            a catalog with duplicate names raises ValueError.
        If Removed: Prompts lose their grounding list and suggestions cannot be checked.
        Testing Notes: Load the bundled careers.json and a tmp file with duplicates.
        """
        # Read bytes for hashing and parse JSON into normalized entries.
        raw_bytes = self._path.read_bytes()
        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        updated_at = datetime.fromtimestamp(self._path.stat().st_mtime).isoformat()

        data = json.loads(raw_bytes.decode("utf-8-sig"))
        items: List[Any]
        if isinstance(data, dict):
            items = data.get("careers", [])
        elif isinstance(data, list):
            items = data
        else:
            items = []

        entries: List[CareerEntry] = []
        seen = set()
        for item in items:
            entry = _normalize_entry(item)
            if entry is None:
                continue
            if entry.name in seen:
                raise ValueError(f"Duplicate career name in catalog: {entry.name!r}")
            seen.add(entry.name)
            entries.append(entry)

        meta = CatalogMeta(
            file_name=self._path.name,
            updated_at=updated_at,
            sha256=sha256,
        )
        logger.info(
            "catalog loaded file=%s careers=%d sha256=%s",
            meta.file_name,
            len(entries),
            meta.sha256[:12],
        )
        return CareerCatalog(entries=tuple(entries)), meta


def _normalize_entry(item: Any):
    # Skip records without a usable name; descriptions default to empty.
    if not isinstance(item, dict):
        return None
    record: Dict[str, Any] = item
    name = str(record.get("name") or "").strip()
    if not name:
        return None
    description = str(record.get("description") or "").strip()
    return CareerEntry(name=name, description=description)
