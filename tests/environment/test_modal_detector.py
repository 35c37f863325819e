"""
Tests for modal candidate selection and the detector against the fake page.
"""

import pytest

from webpilot.environment.modal_detector import (
    ModalDetectionConfig,
    ModalDetector,
    current_modal,
    sort_modals,
)
from webpilot.environment.page_models import Modal, PageSnapshot


def raw_modal(ref, z_index, visible=True, source="structural", **extra):
    return {"ref": ref, "selector": f"#{ref}", "isVisible": visible, "zIndex": z_index, "source": source, **extra}


class TestSelection:

    def test_higher_z_index_is_current(self):
        detector = ModalDetector(backend=None)
        modals = detector.select([raw_modal("low", 100), raw_modal("high", 200)])

        assert [m.ref for m in modals] == ["high", "low"]
        assert current_modal(modals).ref == "high"

    def test_hidden_modal_never_current(self):
        detector = ModalDetector(backend=None)
        modals = detector.select([raw_modal("hidden", 9000, visible=False), raw_modal("shown", 10)])

        assert modals[0].ref == "shown"
        assert current_modal(modals).ref == "shown"

    def test_no_visible_modal(self):
        modals = sort_modals([Modal(selector="#a", is_visible=False, z_index=5)])
        assert current_modal(modals) is None

    def test_union_deduplicates_by_node(self):
        """A node found by both strategies is reported once."""
        detector = ModalDetector(backend=None)
        modals = detector.select([
            raw_modal("m1", 1500, source="structural"),
            raw_modal("m1", 1500, source="heuristic"),
            raw_modal("m2", 1200, source="heuristic"),
        ])

        assert [m.ref for m in modals] == ["m1", "m2"]
        assert modals[0].source == "both"

    def test_malformed_candidates_skipped(self):
        detector = ModalDetector(backend=None)
        modals = detector.select([{"zIndex": 3}, raw_modal("ok", 1)])
        assert [m.ref for m in modals] == ["ok"]

    def test_snapshot_reports_current_modal(self):
        modals = sort_modals([
            Modal(selector="#a", is_visible=True, z_index=100, ref="a"),
            Modal(selector="#b", is_visible=True, z_index=200, ref="b"),
        ])
        snapshot = PageSnapshot(url="https://x.test/", modals=modals)
        wire = snapshot.to_wire()

        assert wire["hasActiveModals"] is True
        assert wire["modals"][wire["currentModal"]]["selector"] == "#b"


class TestConfig:

    def test_coverage_bounds(self):
        with pytest.raises(ValueError):
            ModalDetectionConfig(min_viewport_coverage=0)
        with pytest.raises(ValueError):
            ModalDetectionConfig(min_viewport_coverage=1.5)

    def test_to_js_lowercases_close_texts(self):
        config = ModalDetectionConfig(close_texts=["Accept", "CLOSE"])
        js = config.to_js()
        assert js["closeTexts"] == ["accept", "close"]
        assert js["zIndexThreshold"] == 1000
        assert js["minCoverage"] == 0.3


class TestDetector:

    @pytest.mark.asyncio
    async def test_detects_structural_dialog(self, backend, dom):
        dom.add_modal("cookie", "#cookie-banner", z_index=2147483647,
                      close_button={"selector": "#accept", "text": "Accept", "strategy": "text"})
        dom.add_node("accept", "button", text="Accept", selector="#accept", modal="cookie")

        modals = await ModalDetector(backend).detect()

        assert len(modals) == 1
        assert modals[0].is_visible is True
        assert modals[0].close_button.text == "Accept"
        assert modals[0].interactive_element_count == 1

    @pytest.mark.asyncio
    async def test_modal_state(self, backend, dom):
        dom.add_modal("m", "#m")
        detector = ModalDetector(backend)

        assert await detector.modal_state("m") == (True, True)
        dom.close_modal("m")
        assert await detector.modal_state("m") == (False, False)
