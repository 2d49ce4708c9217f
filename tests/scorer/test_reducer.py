"""Unit tests for psi_runner.scorer.reducer."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from psi_runner.core.exceptions import CallMalformed
from psi_runner.core.schemas.metrics import FilmstripFrame, Strategy
from psi_runner.scorer.reducer import extract_filmstrip, extract_path, reduce_response


def _frames(count: int, prefix: str = "thumb") -> list[dict[str, Any]]:
    return [{"timing": 300 * (i + 1), "timestamp": i, "data": f"{prefix}-{i}"} for i in range(count)]


def _document(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "analysisUTCTimestamp": "2026-10-18T08:00:00.000Z",
        "lighthouseResult": {
            "categories": {"performance": {"score": 0.874}},
            "audits": {
                "first-contentful-paint": {"displayValue": "1.2 s", "numericValue": 1234.5},
                "largest-contentful-paint": {"displayValue": "2.5 s"},
                "cumulative-layout-shift": {"displayValue": "0.05"},
                "total-blocking-time": {"displayValue": "120 ms"},
                "speed-index": {"displayValue": "3.1 s"},
                "screenshot-thumbnails": {"details": {"items": _frames(3)}},
                "final-screenshot": {"details": {"data": "x" * 10_000}},
            },
        },
    }
    doc.update(overrides)
    return doc


class TestExtractPath:
    def test_walks_nested_dicts(self) -> None:
        assert extract_path({"a": {"b": {"c": 1}}}, ("a", "b", "c")) == 1

    @pytest.mark.parametrize(
        "document",
        [{}, {"a": None}, {"a": []}, {"a": {"b": "text"}}, None, "string"],
    )
    def test_returns_default_on_any_miss(self, document: Any) -> None:
        assert extract_path(document, ("a", "b", "c"), default="missing") == "missing"


class TestReduceResponse:
    def test_full_document(self) -> None:
        metrics = reduce_response(_document(), Strategy.MOBILE, max_frames=10)

        assert metrics.strategy is Strategy.MOBILE
        assert metrics.score == 87
        assert metrics.first_contentful_paint == "1.2 s"
        assert metrics.largest_contentful_paint == "2.5 s"
        assert metrics.cumulative_layout_shift == "0.05"
        assert metrics.total_blocking_time == "120 ms"
        assert metrics.speed_index == "3.1 s"
        assert metrics.fetch_time == "2026-10-18T08:00:00.000Z"
        assert [f.data for f in metrics.filmstrip] == ["thumb-0", "thumb-1", "thumb-2"]
        assert metrics.filmstrip[0] == FilmstripFrame(timing=300, data="thumb-0")

    def test_storage_form_drops_everything_else(self) -> None:
        stored = reduce_response(_document(), Strategy.DESKTOP, max_frames=10).to_storage()

        assert set(stored) == {
            "strategy",
            "score",
            "first_contentful_paint",
            "largest_contentful_paint",
            "cumulative_layout_shift",
            "total_blocking_time",
            "speed_index",
            "fetch_time",
            "filmstrip",
        }
        assert stored["strategy"] == "desktop"
        assert "x" * 100 not in str(stored)

    def test_deterministic(self) -> None:
        doc = _document()
        first = reduce_response(doc, Strategy.MOBILE, max_frames=10)
        second = reduce_response(copy.deepcopy(doc), Strategy.MOBILE, max_frames=10)

        assert first == second

    def test_missing_performance_category_gives_null_score(self) -> None:
        doc = _document()
        del doc["lighthouseResult"]["categories"]

        assert reduce_response(doc, Strategy.MOBILE, max_frames=10).score is None

    @pytest.mark.parametrize(
        "raw, expected",
        [(0, 0), (1, 100), (0.5, 50), (0.999, 100), (0.125, 13), (0.875, 88)],
    )
    def test_score_scaling(self, raw: float, expected: int) -> None:
        doc = _document()
        doc["lighthouseResult"]["categories"]["performance"]["score"] = raw

        assert reduce_response(doc, Strategy.MOBILE, max_frames=10).score == expected

    def test_missing_audits_give_nulls(self) -> None:
        doc = {"lighthouseResult": {}}

        metrics = reduce_response(doc, Strategy.MOBILE, max_frames=10)

        assert metrics.first_contentful_paint is None
        assert metrics.speed_index is None
        assert metrics.fetch_time is None
        assert metrics.filmstrip == []

    def test_numeric_value_used_when_display_value_missing(self) -> None:
        doc = _document()
        doc["lighthouseResult"]["audits"]["speed-index"] = {"numericValue": 3100}

        assert reduce_response(doc, Strategy.MOBILE, max_frames=10).speed_index == 3100.0

    @pytest.mark.parametrize("document", [[], "oops", 42, None])
    def test_non_object_is_malformed(self, document: Any) -> None:
        with pytest.raises(CallMalformed):
            reduce_response(document, Strategy.MOBILE, max_frames=10)

    def test_missing_lighthouse_result_is_malformed(self) -> None:
        with pytest.raises(CallMalformed) as exc_info:
            reduce_response({"error": "nope"}, Strategy.DESKTOP, max_frames=10)

        assert exc_info.value.strategy == "desktop"


class TestExtractFilmstrip:
    def test_truncated_to_cap_in_order(self) -> None:
        doc = _document()
        doc["lighthouseResult"]["audits"]["screenshot-thumbnails"]["details"]["items"] = _frames(15)

        frames = extract_filmstrip(doc, max_frames=10)

        assert len(frames) == 10
        assert [f.data for f in frames] == [f"thumb-{i}" for i in range(10)]

    def test_falls_back_to_filmstrip_audit(self) -> None:
        doc = _document()
        audits = doc["lighthouseResult"]["audits"]
        del audits["screenshot-thumbnails"]
        audits["filmstrip"] = {"details": {"items": _frames(2, prefix="film")}}

        assert [f.data for f in extract_filmstrip(doc, max_frames=10)] == ["film-0", "film-1"]

    def test_empty_primary_list_falls_back(self) -> None:
        doc = _document()
        audits = doc["lighthouseResult"]["audits"]
        audits["screenshot-thumbnails"]["details"]["items"] = []
        audits["filmstrip"] = {"details": {"items": _frames(1, prefix="film")}}

        assert [f.data for f in extract_filmstrip(doc, max_frames=10)] == ["film-0"]

    def test_primary_list_of_only_junk_falls_back(self) -> None:
        doc = _document()
        audits = doc["lighthouseResult"]["audits"]
        audits["screenshot-thumbnails"]["details"]["items"] = ["junk", 3, None]
        audits["filmstrip"] = {"details": {"items": _frames(2, prefix="film")}}

        assert [f.data for f in extract_filmstrip(doc, max_frames=10)] == ["film-0", "film-1"]

    def test_junk_items_skipped_and_fields_normalized(self) -> None:
        doc = _document()
        doc["lighthouseResult"]["audits"]["screenshot-thumbnails"]["details"]["items"] = [
            "junk",
            {"timing": "soon", "data": 7},
            {"timing": 100, "data": "ok"},
        ]

        assert extract_filmstrip(doc, max_frames=10) == [
            FilmstripFrame(timing=None, data=None),
            FilmstripFrame(timing=100, data="ok"),
        ]

    def test_zero_cap_keeps_no_frames(self) -> None:
        assert extract_filmstrip(_document(), max_frames=0) == []
