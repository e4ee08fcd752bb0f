from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from deckmap.mapping_model import (
    ControlMapping,
    DeckmapError,
    MappingDocument,
    MappingInfo,
    OutputMapping,
    ScriptFile,
)


class MalformedDocument(DeckmapError):
    pass


def _children_by_name(el: Optional[ET.Element]) -> Dict[str, ET.Element]:
    """Map child tag -> first child element with that tag (lowercased tags)."""
    out: Dict[str, ET.Element] = {}
    if el is None:
        return out
    for ch in el:
        if not isinstance(ch.tag, str):
            continue
        out.setdefault(ch.tag.lower(), ch)
    return out


def _text(el: Optional[ET.Element]) -> Optional[str]:
    if el is None or el.text is None:
        return None
    return el.text.strip()


def _parse_int(raw: str, path: str) -> int:
    s = raw.strip().lower()
    try:
        if s.startswith("0x"):
            return int(s, 16)
        return int(s, 10)
    except ValueError:
        raise MalformedDocument(f"{path}: expected integer, got {raw!r}")


def _parse_number(raw: Optional[str], path: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    if raw.strip().lower().startswith("0x"):
        return float(_parse_int(raw, path))
    try:
        return float(raw)
    except ValueError:
        raise MalformedDocument(f"{path}: expected number, got {raw!r}")


def _required(childs: Dict[str, ET.Element], name: str, path: str) -> str:
    val = _text(childs.get(name))
    if val is None:
        raise MalformedDocument(f"{path}/{name}: required field missing")
    return val


def _parse_info(el: ET.Element) -> MappingInfo:
    childs = _children_by_name(el)
    return MappingInfo(
        name=_text(childs.get("name")),
        author=_text(childs.get("author")),
        description=_text(childs.get("description")),
        forums=_text(childs.get("forums")),
        wiki=_text(childs.get("wiki")),
    )


def _parse_script_file(el: ET.Element, path: str) -> ScriptFile:
    # Attribute names are case-insensitive in practice (functionPrefix vs functionprefix)
    attrs = {k.lower(): v for k, v in el.attrib.items()}
    file_name = attrs.get("filename")
    if not file_name:
        raise MalformedDocument(f"{path}: script file without filename")
    prefix = attrs.get("functionprefix") or None
    return ScriptFile(file_name=file_name, function_prefix=prefix)


def _parse_base(childs: Dict[str, ET.Element], path: str) -> Dict[str, object]:
    return {
        "group": _required(childs, "group", path),
        "key": _required(childs, "key", path),
        "status": _parse_int(_required(childs, "status", path), f"{path}/status"),
        "midino": _parse_int(_required(childs, "midino", path), f"{path}/midino"),
    }


def _parse_control(el: ET.Element, path: str) -> ControlMapping:
    childs = _children_by_name(el)
    base = _parse_base(childs, path)
    opts = childs.get("options")
    options = frozenset(ch.tag.lower() for ch in opts if isinstance(ch.tag, str)) if opts is not None else frozenset()
    return ControlMapping(options=options, **base)  # type: ignore[arg-type]


def _parse_output(el: ET.Element, path: str) -> OutputMapping:
    childs = _children_by_name(el)
    base = _parse_base(childs, path)
    on = _parse_number(_text(childs.get("on")), f"{path}/on")
    off = _parse_number(_text(childs.get("off")), f"{path}/off")
    return OutputMapping(
        minimum=_parse_number(_text(childs.get("minimum")), f"{path}/minimum"),
        maximum=_parse_number(_text(childs.get("maximum")), f"{path}/maximum"),
        on=int(on) if on is not None else None,
        off=int(off) if off is not None else None,
        **base,  # type: ignore[arg-type]
    )


def _elements(parent: Optional[ET.Element]) -> List[ET.Element]:
    if parent is None:
        return []
    return [ch for ch in parent if isinstance(ch.tag, str)]


def parse(document_source: str) -> MappingDocument:
    """Parse a Mixxx controller mapping (XML) into a MappingDocument.

    Missing sections are lenient: no <info>, <scriptfiles>, <controls> or
    <outputs> simply yields empty values. Text that is not well-formed XML,
    or a control without group/key/status/midino, raises MalformedDocument.
    """
    try:
        root = ET.fromstring(document_source)
    except ET.ParseError as e:
        raise MalformedDocument(f"not well-formed XML: {e}") from e

    top = _children_by_name(root)
    info = _parse_info(top["info"]) if "info" in top else MappingInfo()
    controller = _children_by_name(top.get("controller"))

    script_files = tuple(
        _parse_script_file(el, f"/controller/scriptfiles[{i}]")
        for i, el in enumerate(_elements(controller.get("scriptfiles")))
    )
    controls = tuple(
        _parse_control(el, f"/controller/controls[{i}]")
        for i, el in enumerate(_elements(controller.get("controls")))
    )
    outputs = tuple(
        _parse_output(el, f"/controller/outputs[{i}]")
        for i, el in enumerate(_elements(controller.get("outputs")))
    )
    return MappingDocument(info=info, script_files=script_files, controls=controls, outputs=outputs)
