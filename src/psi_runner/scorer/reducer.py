"""Reduce a PageSpeed Insights document to a :class:`CompactMetrics` record.

Every lookup is null-safe: a missing or oddly-typed branch yields ``None``
rather than an exception.  The only hard requirement is that the document is
a JSON object carrying a ``lighthouseResult`` object; anything else is
reported as :class:`~psi_runner.core.exceptions.CallMalformed`.
"""

from __future__ import annotations

import math
from typing import Any, Sequence

from psi_runner.core.exceptions import CallMalformed
from psi_runner.core.schemas.metrics import CompactMetrics, FilmstripFrame, Strategy
from psi_runner.scorer.config import (
    AUDIT_DISPLAY_FIELDS,
    FETCH_TIME_PATH,
    FILMSTRIP_PATHS,
    SCORE_PATH,
)


def extract_path(document: Any, path: Sequence[str], default: Any = None) -> Any:
    """Walk ``path`` through nested dicts, returning ``default`` on any miss.

    Args:
        document: Decoded JSON value to walk.
        path: Sequence of object keys.
        default: Value returned when a key is absent, a value on the way is
            not a dict, or the leaf is ``None``.

    Returns:
        The value at ``path`` or ``default``.
    """
    current = document
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return default if current is None else current


def _to_score(raw: Any) -> int | None:
    """Scale a 0-1 fraction to an integer 0-100."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if math.isnan(raw):
        return None
    # Half-up: 0.125 scores 13.
    return int(math.floor(max(0.0, min(1.0, raw)) * 100 + 0.5))


def _display_value(audit: Any) -> str | float | None:
    """Return an audit's ``displayValue``, falling back to ``numericValue``."""
    if not isinstance(audit, dict):
        return None
    display = audit.get("displayValue")
    if isinstance(display, str) and display:
        return display
    numeric = audit.get("numericValue")
    if isinstance(numeric, (int, float)) and not isinstance(numeric, bool):
        return float(numeric)
    return None


def _to_frame(item: Any) -> FilmstripFrame | None:
    if not isinstance(item, dict):
        return None
    timing = item.get("timing")
    if isinstance(timing, bool) or not isinstance(timing, (int, float)):
        timing = None
    data = item.get("data")
    if not isinstance(data, str):
        data = None
    return FilmstripFrame(timing=timing, data=data)


def extract_filmstrip(document: Any, max_frames: int) -> list[FilmstripFrame]:
    """Return up to ``max_frames`` normalized frames from the first present path.

    A path counts as present when at least one of its list items is an
    object.  Items that are not objects are dropped before the cap is applied.
    """
    if max_frames <= 0:
        return []
    for path in FILMSTRIP_PATHS:
        items = extract_path(document, path)
        if not isinstance(items, list):
            continue
        frames = [frame for frame in map(_to_frame, items) if frame is not None]
        if frames:
            return frames[:max_frames]
    return []


def reduce_response(
    document: Any,
    strategy: Strategy,
    *,
    max_frames: int,
) -> CompactMetrics:
    """Reduce a full scorer response to the compact record that gets stored.

    Args:
        document: Decoded JSON body of a 2xx scorer response.
        strategy: Strategy the call was made with.
        max_frames: Filmstrip frame cap.

    Returns:
        A :class:`CompactMetrics` instance.  Deterministic for a given input.

    Raises:
        CallMalformed: If ``document`` is not an object with a
            ``lighthouseResult`` object.
    """
    if not isinstance(document, dict):
        raise CallMalformed(
            f"expected a JSON object, got {type(document).__name__}",
            strategy=strategy.value,
        )
    if not isinstance(document.get("lighthouseResult"), dict):
        raise CallMalformed("response has no lighthouseResult", strategy=strategy.value)

    audits = extract_path(document, ("lighthouseResult", "audits"), default={})
    displays = {
        field: _display_value(audits.get(audit_id) if isinstance(audits, dict) else None)
        for field, audit_id in AUDIT_DISPLAY_FIELDS.items()
    }
    fetch_time = extract_path(document, FETCH_TIME_PATH)

    return CompactMetrics(
        strategy=strategy,
        score=_to_score(extract_path(document, SCORE_PATH)),
        fetch_time=fetch_time if isinstance(fetch_time, str) else None,
        filmstrip=extract_filmstrip(document, max_frames),
        **displays,
    )
