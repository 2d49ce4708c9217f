"""Constants describing the parts of a PageSpeed Insights response we keep."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

#: Lighthouse category requested on every call.  Other categories are never
#: read, so asking for them only inflates the response.
CATEGORY: str = "performance"

#: User-agent string sent with every scorer request.
USER_AGENT: str = "psi-runner/0.1 (+batch PageSpeed Insights runner)"

#: Characters of a non-2xx response body kept in the error message.
ERROR_BODY_EXCERPT_CHARS: int = 300

# ---------------------------------------------------------------------------
# Response paths
# ---------------------------------------------------------------------------

#: Path to the 0-1 performance score.
SCORE_PATH: tuple[str, ...] = ("lighthouseResult", "categories", "performance", "score")

#: Path to the analysis timestamp.
FETCH_TIME_PATH: tuple[str, ...] = ("analysisUTCTimestamp",)

#: Metrics record field -> Lighthouse audit id whose ``displayValue`` is kept.
AUDIT_DISPLAY_FIELDS: dict[str, str] = {
    "first_contentful_paint": "first-contentful-paint",
    "largest_contentful_paint": "largest-contentful-paint",
    "cumulative_layout_shift": "cumulative-layout-shift",
    "total_blocking_time": "total-blocking-time",
    "speed_index": "speed-index",
}

#: Alternate locations of the filmstrip item list, in order of preference.
FILMSTRIP_PATHS: tuple[tuple[str, ...], ...] = (
    ("lighthouseResult", "audits", "screenshot-thumbnails", "details", "items"),
    ("lighthouseResult", "audits", "filmstrip", "details", "items"),
)
