"""Output and formatting helpers for CLI commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .identity import Resolution


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def write_json(data: Any, output: Optional[Union[str, Path]]) -> None:
    """Write JSON to a file, or to stdout when no output is given."""
    if output is None:
        print(to_json(data))
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_json(data) + "\n", encoding="utf-8")
    logging.info("Wrote %s", path)


def resolution_to_dict(resolution: Resolution) -> Dict[str, Any]:
    """Convert a resolution to a JSON-serializable dict."""
    data: Dict[str, Any] = {
        "url": resolution.url,
        "status": resolution.status.value,
        "shortname": resolution.shortname,
    }
    if resolution.descriptor is not None:
        data["spec"] = {
            "url": resolution.descriptor.url,
            "shortname": resolution.descriptor.shortname,
            "title": resolution.descriptor.title,
        }
    if resolution.dated:
        data["dated"] = True
    if resolution.replacement:
        data["replacement"] = resolution.replacement
    return data


def format_resolutions(resolutions: List[Resolution]) -> str:
    """One line per link: status, shortname and the spec it resolved to."""
    lines = []
    for resolution in resolutions:
        line = f"{resolution.url}\t{resolution.status.value}"
        if resolution.shortname:
            line += f"\t{resolution.shortname}"
        if resolution.descriptor is not None:
            line += f"\t{resolution.descriptor.url}"
        elif resolution.replacement:
            line += f"\treplaced by {resolution.replacement}"
        lines.append(line)
    return "\n".join(lines)


def format_study_summary(study: Dict[str, Any]) -> str:
    """Short markdown summary of a study file."""
    stats = study.get("stats", {})
    failing = [entry for entry in study.get("results", []) if not entry["report"].get("ok", True)]
    lines = [
        f"# {study.get('title') or 'Study'}",
        f"_{stats.get('studied', 0)} specs studied, {len(failing)} with anomalies_",
        "",
    ]
    for entry in failing:
        checks = ", ".join(entry["report"].get("failedChecks", []))
        lines.append(f"- {entry.get('title') or entry.get('url')}: {checks}")
    return "\n".join(lines)
