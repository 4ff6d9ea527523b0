"""Output reporting helpers."""
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO

from .models import RankedResult

NO_RESULTS_MESSAGE = "No matching places found. Try a larger radius or a different search."


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_results_json(path: str, rows: Iterable[Dict[str, Any]]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(list(rows), f, ensure_ascii=False, indent=2)


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def search_params(result: RankedResult, query_label: str, radius_km: float) -> Dict[str, Any]:
    return {
        "searchQuery": query_label,
        "radiusKm": radius_km,
        "location": result.origin.label or "Current Location",
        "locationSource": result.origin.source,
        "algorithm": result.algorithm,
    }


def render_rows(rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return NO_RESULTS_MESSAGE
    lines: List[str] = []
    for idx, row in enumerate(rows, start=1):
        distance = row.get("distanceKm")
        distance_text = f" - {distance} km" if distance is not None else ""
        lines.append(f"{idx}. {row.get('name')}{distance_text}")
        lines.append(
            "   rating {rating} ({reviews} reviews), score {score:.2f}".format(
                rating=row.get("rating"),
                reviews=row.get("reviewCount"),
                score=float(row.get("score") or 0.0),
            )
        )
        if row.get("address"):
            lines.append(f"   {row['address']}")
    return "\n".join(lines)
