"""Checks that CSS and IDL terms of a spec come with a matching <dfn>."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .document import CrawlResult
from .identity import IdentityTables, load_identity_tables

LOGGER = logging.getLogger(__name__)

_OVERLOAD = re.compile(r"!overload-\d")
_ARGS = re.compile(r"\(.*\)")
_FUNCTION_VALUE = re.compile(r"^<(.*)\(\)>$")
_QUOTED = re.compile(r'^"(.*)"$')

_INTERFACE_LIKE = ("callback", "dictionary", "enum", "interface", "namespace")
_CONTAINERS = ("callback", "callback interface", "dictionary", "interface", "interface mixin", "namespace")
_NO_DFN = ("includes", "iterable", "maplike", "setlike", "argument")


# -----------------------------------------------------------------------------
# CSS
# -----------------------------------------------------------------------------


def expected_css_dfns(css: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Definitions a CSS extract calls for."""
    expected: List[Dict[str, Any]] = []
    for desc in (css.get("properties") or {}).values():
        if not desc.get("newValues"):
            expected.append({"linkingText": [desc["name"]], "type": "property", "for": []})
    for descs in (css.get("descriptors") or {}).values():
        for desc in descs if isinstance(descs, list) else [descs]:
            expected.append(
                {"linkingText": [desc["name"]], "type": "descriptor", "for": [desc.get("for")]}
            )
    for name, desc in (css.get("valuespaces") or {}).items():
        expected.append({"linkingText": [name], "value": (desc or {}).get("value")})
    return expected


def _match_css_dfn(expected: Dict[str, Any], actual: Dict[str, Any]) -> bool:
    if expected["linkingText"] != actual.get("linkingText"):
        return False
    if expected.get("for") and expected["for"] != actual.get("for"):
        return False
    return not expected.get("type") or expected["type"] == actual.get("type")


def _missing_css(css: Dict[str, Any], dfns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    missing = []
    for expected in expected_css_dfns(css):
        actual = _first(dfns, lambda dfn: _match_css_dfn(expected, dfn))
        if actual is None and not expected.get("type"):
            alt_text = [_FUNCTION_VALUE.sub(r"\1()", expected["linkingText"][0])]
            actual = _first(dfns, lambda dfn: dfn.get("linkingText") == alt_text)
        if actual is None and expected.get("value"):
            actual = _first(dfns, lambda dfn: dfn.get("linkingText") == [expected["value"]])
        if actual is None:
            found = _first(dfns, lambda dfn: dfn.get("linkingText") == expected["linkingText"])
            missing.append({"expected": expected, "found": found})
    return missing


# -----------------------------------------------------------------------------
# IDL
# -----------------------------------------------------------------------------


def _serialize_args(args: Optional[Iterable[Dict[str, Any]]]) -> str:
    return ", ".join(
        f"...{arg['name']}" if arg.get("variadic") else arg["name"] for arg in args or []
    )


def _is_default_to_json(desc: Dict[str, Any]) -> bool:
    return (
        desc.get("type") == "operation"
        and desc.get("name") == "toJSON"
        and any(attr.get("name") == "Default" for attr in desc.get("extAttrs") or [])
    )


def expected_idl_dfn(desc: Dict[str, Any], parent: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Definition one parsed IDL construct calls for, or None."""
    kind = desc.get("type")
    expected: Dict[str, Any] = {
        "linkingText": [desc.get("name")],
        "type": kind,
        "for": [parent["name"]] if parent is not None and parent is not desc else [],
    }

    if kind in ("attribute", "const", "enum", "typedef"):
        return expected
    if kind == "constructor":
        if parent is not None and parent.get("name", "").startswith("HTML"):
            return None
        expected["linkingText"] = [f"constructor({_serialize_args(desc.get('arguments'))})"]
        return expected
    if kind == "enum-value":
        value = _QUOTED.sub(r"\1", desc.get("value", ""))
        expected["linkingText"] = [f'"{value}"', value] if value else [f'"{value}"']
        return expected
    if kind == "field":
        expected["type"] = "dict-member"
        return expected
    if kind in _CONTAINERS:
        if desc.get("partial"):
            return None
        expected["type"] = {"callback interface": "callback", "interface mixin": "interface"}.get(kind, kind)
        return expected
    if kind in _NO_DFN:
        return None
    if kind == "operation":
        special = desc.get("special")
        if special == "stringifier":
            expected["linkingText"] = ["stringification behavior", "stringificationbehavior"]
            expected["type"] = "dfn"
            return expected
        unnamed_special = not desc.get("name") and special in ("getter", "setter", "deleter")
        if unnamed_special or _is_default_to_json(desc):
            return None
        expected["linkingText"] = [f"{desc.get('name')}({_serialize_args(desc.get('arguments'))})"]
        expected["type"] = "method"
        return expected

    LOGGER.warning("Unsupported IDL type %s", kind)
    return None


def _expected_from_desc(desc: Dict[str, Any], exclude_root: bool = False) -> List[Dict[str, Any]]:
    to_process = [] if exclude_root else [desc]
    if desc.get("type") == "enum":
        to_process.extend(desc.get("values") or [])
    elif desc.get("type") in _CONTAINERS:
        to_process.extend(desc.get("members") or [])

    expected = []
    for item in to_process:
        dfn = expected_idl_dfn(item, desc)
        if dfn is not None:
            dfn["access"] = "public"
            dfn["informative"] = False
            expected.append(dfn)
    return expected


def expected_idl_dfns(idl: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Definitions the parsed IDL names of a spec call for."""
    expected: List[Dict[str, Any]] = []
    for desc in (idl.get("idlNames") or {}).values():
        if isinstance(desc, dict):
            expected.extend(_expected_from_desc(desc))
    for extended in (idl.get("idlExtendedNames") or {}).values():
        for desc in extended or []:
            if isinstance(desc, dict):
                expected.extend(_expected_from_desc(desc, exclude_root=True))
    return expected


def match_idl_dfn(
    expected: Dict[str, Any],
    actual: Dict[str, Any],
    *,
    skip_args: bool = False,
    skip_for: bool = False,
    skip_type: bool = False,
) -> bool:
    fixed = [_OVERLOAD.sub("", text).replace("(, ", "(", 1) for text in actual.get("linkingText") or []]
    found = any(value in fixed for value in expected["linkingText"])
    if not found and skip_args:
        names = {_ARGS.sub("", text) for text in fixed}
        found = any(_ARGS.sub("", value) in names for value in expected["linkingText"])
    if not found:
        return False
    if not skip_for and not all(value in (actual.get("for") or []) for value in expected["for"]):
        return False
    return skip_type or expected["type"] == actual.get("type")


def _missing_idl(idl: Dict[str, Any], dfns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    missing = []
    for expected in expected_idl_dfns(idl):
        if _first(dfns, lambda dfn: match_idl_dfn(expected, dfn)) is not None:
            continue
        parent = None
        if expected["for"] and expected["for"][0]:
            parent = _first(
                dfns,
                lambda dfn: (dfn.get("linkingText") or [None])[0] == expected["for"][0]
                and dfn.get("type") in _INTERFACE_LIKE,
            )
        found = _first(dfns, lambda dfn: match_idl_dfn(expected, dfn, skip_args=True))
        if found is not None:
            missing.append({"expected": expected, "found": found, "for": parent, "warning": True})
            continue
        found = _first(dfns, lambda dfn: match_idl_dfn(expected, dfn, skip_args=True, skip_type=True))
        if found is None:
            found = _first(
                dfns,
                lambda dfn: match_idl_dfn(expected, dfn, skip_args=True, skip_type=True, skip_for=True),
            )
        missing.append({"expected": expected, "found": found, "for": parent})
    return missing


def _first(items: Iterable[Dict[str, Any]], predicate) -> Optional[Dict[str, Any]]:
    return next((item for item in items if predicate(item)), None)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def check_spec_definitions(
    result: CrawlResult,
    *,
    tables: Optional[IdentityTables] = None,
    include_obsolete: bool = False,
) -> Dict[str, Any]:
    """Return the CSS and IDL terms of a spec that lack a definition.

    Returns:
        ``{"css": [...], "idl": [...]}``, or ``{"obsoleteDfnsModel": True}``
        for specs that predate the current definitions model. Entries flagged
        with ``warning`` are near misses.
    """
    tables = tables or load_identity_tables()
    if not include_obsolete and result.shortname in tables.obsolete_dfns_model:
        return {"obsoleteDfnsModel": True}
    dfns = result.dfns or []
    return {
        "css": _missing_css(result.css or {}, dfns),
        "idl": _missing_idl(result.idl or {}, dfns),
    }


def has_missing_dfns(report: Dict[str, Any]) -> bool:
    """Whether a missing definitions report holds anything besides warnings."""
    if report.get("obsoleteDfnsModel"):
        return True
    return any(
        not entry.get("warning")
        for kind in ("css", "idl")
        for entry in report.get(kind) or []
    )
