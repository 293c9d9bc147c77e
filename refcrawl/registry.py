"""Spec registry loading and crawl list preparation."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .document import SeriesInfo, SpecDescriptor

LOGGER = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_SHORTNAME_STRIP = re.compile(r"[:/\\.]")

SpecEntry = Union[str, dict, SpecDescriptor]


class SpecListError(ValueError):
    """Raised when a crawl list entry cannot be turned into a spec."""

    def __init__(self, message: str, entry: str = "") -> None:
        super().__init__(message)
        self.entry = entry


def load_registry(path: Union[str, Path]) -> List[SpecDescriptor]:
    """Load spec descriptors from a JSON file.

    Accepts either a plain array of descriptors or a crawl result file
    (an object with a "results" array).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("results") or []
    if not isinstance(data, list):
        raise SpecListError(f"{path} does not contain a list of specs", str(path))
    specs = [SpecDescriptor.from_dict(item) for item in data if isinstance(item, dict)]
    LOGGER.debug("Loaded %d specs from %s", len(specs), path)
    return specs


def read_spec_list(path: Union[str, Path]) -> List[SpecEntry]:
    """Read a list file: a JSON array, or one URL or shortname per line."""
    text = Path(path).read_text(encoding="utf-8")
    stripped = text.lstrip()
    if stripped.startswith("["):
        data = json.loads(stripped)
        return [item for item in data if isinstance(item, (str, dict))]
    entries: List[SpecEntry] = []
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            entries.append(line)
    return entries


def find_in_registry(entry: str, registry: Iterable[SpecDescriptor]) -> Optional[SpecDescriptor]:
    """Spec matching a URL, shortname or series shortname."""
    registry = list(registry)
    for spec in registry:
        if entry in (spec.url, spec.shortname):
            return spec
    for spec in registry:
        if spec.series_shortname == entry and spec.is_current:
            return spec
    return None


def adhoc_descriptor(url: str) -> SpecDescriptor:
    """Descriptor for a URL that is not in the registry."""
    shortname = _SHORTNAME_STRIP.sub("", url)
    return SpecDescriptor(
        url=url,
        shortname=shortname,
        series=SeriesInfo(shortname=shortname, current_specification=shortname),
        nightly_url=url,
    )


def prepare_spec_list(
    entries: Sequence[SpecEntry],
    registry: Iterable[SpecDescriptor] = (),
) -> List[SpecDescriptor]:
    """Turn crawl list entries into spec descriptors.

    Raises:
        SpecListError: If an entry is neither known nor a URL or HTML file.
    """
    registry = list(registry)
    specs: List[SpecDescriptor] = []
    for entry in entries:
        if isinstance(entry, SpecDescriptor):
            specs.append(entry)
            continue
        if isinstance(entry, dict):
            specs.append(SpecDescriptor.from_dict(entry))
            continue
        found = find_in_registry(entry, registry)
        if found is not None:
            specs.append(found)
        elif _ABSOLUTE_URL.match(entry):
            specs.append(adhoc_descriptor(entry))
        elif entry.endswith(".html"):
            specs.append(adhoc_descriptor(Path(entry).resolve().as_uri()))
        else:
            raise SpecListError(
                f"Spec ID {entry!r} can neither be found in the registry "
                "nor be interpreted as a URL or a path to an HTML file",
                entry,
            )
    return specs
