from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from deckmap.controller import ControllerMapping, MappingEngine
from deckmap.mapping_model import DeckmapError


class ManifestError(DeckmapError):
    pass


@dataclass(frozen=True)
class ManifestEntry:
    name: str
    filename: str
    id: str


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def validate_manifest(obj: Any) -> List[str]:
    """Check a manifest: a JSON array of {name, filename, id} records."""
    errors: List[str] = []
    if not isinstance(obj, list):
        _err(errors, "/", "must be an array")
        return errors
    seen = set()
    for i, ent in enumerate(obj):
        path = f"/{i}"
        if not isinstance(ent, dict):
            _err(errors, path, "must be object")
            continue
        for key in ("name", "filename", "id"):
            if not isinstance(ent.get(key), str) or not ent.get(key):
                _err(errors, f"{path}/{key}", "required non-empty string")
        ident = ent.get("id")
        if isinstance(ident, str):
            if ident.lower() in seen:
                _err(errors, f"{path}/id", f"duplicate id '{ident}'")
            seen.add(ident.lower())
    return errors


def parse_manifest(obj: Any) -> List[ManifestEntry]:
    errors = validate_manifest(obj)
    if errors:
        raise ManifestError("invalid manifest: " + "; ".join(errors))
    return [ManifestEntry(name=e["name"], filename=e["filename"], id=e["id"]) for e in obj]


def load_manifest(path: str) -> List[ManifestEntry]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except (OSError, ValueError) as e:
        raise ManifestError(f"failed to read manifest {path}: {e}") from e
    return parse_manifest(obj)


def _matches(entry: ManifestEntry, device_name: str) -> bool:
    dev = device_name.strip().lower()
    if not dev:
        return False
    for cand in (entry.id, entry.name):
        c = cand.strip().lower()
        if c and (c == dev or c in dev):
            return True
    return False


def candidates(entries: List[ManifestEntry], device_name: str) -> List[ManifestEntry]:
    return [e for e in entries if _matches(e, device_name)]


def auto_detect(entries: List[ManifestEntry], device_name: str) -> Optional[ManifestEntry]:
    """The manifest entry for a device, only when exactly one candidate matches.

    Port names usually decorate the model name ("DDJ-FLX4 MIDI 1"), so an
    id or name contained in the device name counts, case-insensitively.
    """
    found = candidates(entries, device_name)
    return found[0] if len(found) == 1 else None


class DirectoryLoader:
    """Fetches mapping and script sources by file name relative to a directory."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = os.path.abspath(base_dir)

    def path_for(self, file_name: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, file_name))
        # Scripts may not escape the mapping directory
        if os.path.commonpath([path, self.base_dir]) != self.base_dir:
            raise FileNotFoundError(f"{file_name} is outside {self.base_dir}")
        return path

    def __call__(self, file_name: str) -> str:
        with open(self.path_for(file_name), "r", encoding="utf-8") as f:
            return f.read()


def load_from_manifest(engine: MappingEngine, entry: ManifestEntry, base_dir: str, midi: Any = None) -> ControllerMapping:
    """Load entry's mapping into engine; scripts resolve relative to the mapping file."""
    loader = DirectoryLoader(base_dir)
    try:
        xml_source = loader(entry.filename)
    except OSError as e:
        raise ManifestError(f"failed to read mapping {entry.filename}: {e}") from e
    mapping_dir = os.path.dirname(loader.path_for(entry.filename))
    return engine.load_mapping(xml_source, DirectoryLoader(mapping_dir), midi=midi)


def summarize(entries: List[ManifestEntry]) -> List[Dict[str, str]]:
    return [{"name": e.name, "filename": e.filename, "id": e.id} for e in entries]
