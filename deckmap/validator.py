from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Dict, List, Optional, Tuple

from deckmap.controller import ControllerMapping
from deckmap.decoder import DECODED_CLASSES
from deckmap.dispatcher import ScriptDispatcher
from deckmap.manifest import DirectoryLoader, validate_manifest
from deckmap.mapping_model import MappingDocument
from deckmap.mapping_parser import MalformedDocument, parse
from deckmap.script_sandbox import ScriptLoadError


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def validate_mapping(doc: MappingDocument) -> List[str]:
    """Lint a parsed mapping.

    Returns human-readable problems with path-like prefixes. A mapping with
    problems still loads; these are the entries that can never fire or that
    point at scripts the mapping does not declare.
    """
    errors: List[str] = []
    prefixes = set()
    for i, sf in enumerate(doc.script_files):
        spath = f"/scriptfiles[{i}]"
        if not sf.file_name.strip():
            _err(errors, spath + "/filename", "required")
        if sf.function_prefix:
            if sf.function_prefix in prefixes:
                _err(errors, spath + "/functionprefix", f"duplicate prefix '{sf.function_prefix}'")
            prefixes.add(sf.function_prefix)

    seen: Dict[Tuple[int, int], int] = {}
    for i, c in enumerate(doc.controls):
        cpath = f"/controls[{i}]"
        if not c.group.strip():
            _err(errors, cpath + "/group", "required non-empty")
        if not c.key.strip():
            _err(errors, cpath + "/key", "required non-empty")
        if not (0 <= c.status <= 0xFF):
            _err(errors, cpath + "/status", "must be a byte 0x00..0xFF")
        elif c.message_class not in DECODED_CLASSES:
            _err(errors, cpath + "/status", f"message class 0x{c.message_class:02X} is never decoded (note on/off or CC only)")
        if not (0 <= c.midino <= 0x7F):
            _err(errors, cpath + "/midino", "must be 0..127")
        slot = (c.status, c.midino)
        if slot in seen:
            _err(errors, cpath, f"unreachable: controls[{seen[slot]}] already maps status 0x{c.status:02X} midino 0x{c.midino:02X}")
        else:
            seen[slot] = i
        if c.is_script_binding:
            parts = c.key.split(".")
            if len(parts) < 2 or not all(parts):
                _err(errors, cpath + "/key", "script binding must look like Prefix.function")
            elif parts[0] not in prefixes:
                _err(errors, cpath + "/key", f"unknown script prefix '{parts[0]}'")

    for i, o in enumerate(doc.outputs):
        opath = f"/outputs[{i}]"
        if not (0 <= o.midino <= 0x7F):
            _err(errors, opath + "/midino", "must be 0..127")
        if o.minimum is not None and o.maximum is not None and o.minimum > o.maximum:
            _err(errors, opath, "minimum exceeds maximum")
    return errors


def validate_handlers(mapping: ControllerMapping) -> List[str]:
    """Script-bound controls whose handler does not resolve after loading."""
    errors: List[str] = []
    dispatcher = ScriptDispatcher(mapping.sandbox)
    for i, c in enumerate(mapping.doc.controls):
        if c.is_script_binding and dispatcher.resolve_handler(c.key) is None:
            _err(errors, f"/controls[{i}]/key", f"handler '{c.key}' not found in loaded scripts")
    return errors


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Validate a Mixxx controller mapping (and optionally its scripts)")
    ap.add_argument("path", help="Path to the mapping XML, or the manifest JSON with --manifest")
    ap.add_argument("--scripts", action="store_true", help="Also load the referenced scripts and check script bindings resolve")
    ap.add_argument("--manifest", action="store_true", help="Treat path as a manifest JSON file")
    args = ap.parse_args(argv)

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            source = f.read()
    except OSError as e:
        print(f"error: failed to read {args.path}: {e}", file=sys.stderr)
        return 2

    if args.manifest:
        try:
            errors = validate_manifest(json.loads(source))
        except ValueError as e:
            print(f"error: {args.path} is not JSON: {e}", file=sys.stderr)
            return 2
    else:
        try:
            doc = parse(source)
        except MalformedDocument as e:
            print(f"error: {e}", file=sys.stderr)
            return 2
        errors = validate_mapping(doc)
        if args.scripts:
            base = os.path.dirname(os.path.abspath(args.path))
            try:
                mapping = ControllerMapping.load(source, DirectoryLoader(base))
            except ScriptLoadError as e:
                print(f"error: {e}", file=sys.stderr)
                return 2
            errors.extend(validate_handlers(mapping))

    if errors:
        print(f"invalid {os.path.basename(args.path)}:")
        for e in errors:
            print(f" - {e}")
        return 1
    print("ok: valid")
    return 0


if __name__ == "__main__":
    sys.exit(main())
