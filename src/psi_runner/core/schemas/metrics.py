"""Pydantic schemas for the compact metrics record stored per strategy.

The external scorer returns a multi-megabyte Lighthouse document; only a
:class:`CompactMetrics` instance is allowed to leave the scorer client and
reach the ``tasks.mobile`` / ``tasks.desktop`` JSONB columns.
"""

from __future__ import annotations

import enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Strategy(str, enum.Enum):
    """Device emulation variant requested from the scorer."""

    MOBILE = "mobile"
    DESKTOP = "desktop"


#: Order in which strategy calls are issued for every task.
STRATEGIES: tuple[Strategy, ...] = (Strategy.MOBILE, Strategy.DESKTOP)


class FilmstripFrame(BaseModel):
    """One timestamped screenshot of the page load.

    Attributes:
        timing: Milliseconds since navigation start, if reported.
        data: Image payload (usually a ``data:image/jpeg;base64,...`` URI).
    """

    model_config = ConfigDict(frozen=True)

    timing: Optional[float] = None
    data: Optional[str] = None


class CompactMetrics(BaseModel):
    """Bounded subset of a scorer response for one strategy.

    Attributes:
        strategy: Which strategy produced the record.
        score: Performance category score scaled to 0-100, or ``None`` when
            the category is absent.
        first_contentful_paint: FCP display value (e.g. ``"1.2 s"``).
        largest_contentful_paint: LCP display value.
        cumulative_layout_shift: CLS display value.
        total_blocking_time: TBT display value.
        speed_index: Speed Index display value.
        fetch_time: Analysis timestamp reported by the scorer.
        filmstrip: Capped, ordered list of load-progress frames.
    """

    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    score: Optional[int] = Field(default=None, ge=0, le=100)
    first_contentful_paint: Optional[Union[str, float]] = None
    largest_contentful_paint: Optional[Union[str, float]] = None
    cumulative_layout_shift: Optional[Union[str, float]] = None
    total_blocking_time: Optional[Union[str, float]] = None
    speed_index: Optional[Union[str, float]] = None
    fetch_time: Optional[str] = None
    filmstrip: list[FilmstripFrame] = Field(default_factory=list)

    def to_storage(self) -> dict:
        """Return the JSON-compatible dict written to the JSONB column."""
        return self.model_dump(mode="json")
