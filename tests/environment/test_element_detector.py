"""
Tests for the element catalog: base scores, modal priority and snapshot assembly.
"""

import pytest

from webpilot.agents.exceptions import NavigationInterruptedError
from webpilot.environment import element_detector as detector_module
from webpilot.environment.element_detector import (
    MAX_BASE_SCORE,
    DetectionConfig,
    ElementCatalog,
    base_score,
    element_kind,
)
from webpilot.environment.modal_detector import ModalDetectionConfig, ModalDetector


def raw(tag, text="", order=0, modal_ref=None, **extra):
    return {"tag": tag, "text": text, "selector": f"#{tag}{order}", "order": order, "modalRef": modal_ref, **extra}


class TestScoring:

    @pytest.mark.parametrize("element,kind", [
        (raw("button"), "button"),
        (raw("input", type="submit"), "submit"),
        (raw("input", type="email"), "input"),
        (raw("a"), "link"),
        (raw("select"), "select"),
        (raw("input", type="checkbox"), "checkbox"),
        (raw("div", role="tab"), "tab"),
        (raw("div", hasOnclick=True), "clickable"),
        (raw("span", tabindex=0), "focusable"),
        (raw("div"), "generic"),
    ])
    def test_element_kind(self, element, kind):
        assert element_kind(element) == kind

    def test_interactive_tags_outrank_generic(self):
        assert base_score(raw("button")) > base_score(raw("a")) > base_score(raw("div"))

    def test_named_elements_score_higher(self):
        assert base_score(raw("button", text="Buy")) == base_score(raw("button")) + 1

    def test_modal_bonus_dominates_base_scores(self):
        assert ModalDetectionConfig().priority_bonus > MAX_BASE_SCORE

    def test_catalog_rejects_weak_bonus(self):
        detector = ModalDetector(None, ModalDetectionConfig(priority_bonus=MAX_BASE_SCORE))
        with pytest.raises(ValueError):
            ElementCatalog(None, modal_detector=detector)


class TestRanking:

    def test_modal_descendant_beats_same_type_outside(self):
        catalog = ElementCatalog(None)
        elements = catalog.rank_elements(
            [raw("button", "Buy now", order=0), raw("button", "Accept", order=1, modal_ref="m1")],
            {"m1": 1000},
        )

        assert elements[0].text == "Accept"
        assert elements[0].in_modal is True
        assert elements[0].priority > elements[1].priority
        assert elements[0].modal_z_index == 1000

    def test_modal_dominance_is_absolute(self):
        """The weakest element inside a modal still beats the strongest one outside."""
        catalog = ElementCatalog(None)
        elements = catalog.rank_elements(
            [raw("button", "Checkout", order=0), raw("div", order=1, modal_ref="m1")],
            {"m1": 10},
        )
        assert elements[0].tag == "div"

    def test_hidden_modal_gives_no_bonus(self):
        catalog = ElementCatalog(None)
        elements = catalog.rank_elements([raw("button", "Close", modal_ref="gone")], {})
        assert elements[0].in_modal is False
        assert elements[0].priority == base_score(raw("button", "Close"))

    def test_top_modal_breaks_ties(self):
        catalog = ElementCatalog(None)
        elements = catalog.rank_elements(
            [raw("button", "Low", order=0, modal_ref="low"), raw("button", "High", order=1, modal_ref="high")],
            {"low": 100, "high": 200},
        )
        assert [e.text for e in elements] == ["High", "Low"]

    def test_document_order_breaks_remaining_ties(self):
        catalog = ElementCatalog(None)
        elements = catalog.rank_elements([raw("a", "Two", order=2), raw("a", "One", order=1)], {})
        assert [e.text for e in elements] == ["One", "Two"]

    def test_cap(self):
        catalog = ElementCatalog(None, config=DetectionConfig(max_interactive_elements=3))
        elements = catalog.rank_elements([raw("a", str(i), order=i) for i in range(10)], {})
        assert len(elements) == 3


class TestCatalog:

    @pytest.mark.asyncio
    async def test_snapshot_from_page(self, backend, dom):
        dom.add_node("buy", "button", text="Buy", selector="#buy")
        dom.add_modal("cookie", "#cookie", z_index=5000,
                      close_button={"selector": "#accept", "text": "Accept"})
        dom.add_node("accept", "button", text="Accept", selector="#accept", modal="cookie")

        snapshot = await ElementCatalog(backend).catalog()

        assert snapshot.url == "https://shop.example/"
        assert snapshot.has_active_modals is True
        assert snapshot.current_modal.selector == "#cookie"
        assert snapshot.interactive_elements[0].selector == "#accept"
        assert snapshot.interactive_elements[0].in_modal is True
        assert snapshot.degraded is False

    @pytest.mark.asyncio
    async def test_not_ready_marks_degraded(self, backend, dom):
        backend.ready = False
        dom.add_node("buy", "button", text="Buy")

        snapshot = await ElementCatalog(backend).catalog()

        assert snapshot.degraded is True
        assert len(snapshot.interactive_elements) == 1

    @pytest.mark.asyncio
    async def test_retries_after_navigation(self, backend, dom):
        dom.add_node("buy", "button", text="Buy")
        extract = backend.handlers[detector_module.ELEMENT_EXTRACTION_JS]
        calls = []

        def flaky(config):
            calls.append(config)
            if len(calls) == 1:
                raise NavigationInterruptedError()
            return extract(config)

        backend.handlers[detector_module.ELEMENT_EXTRACTION_JS] = flaky
        catalog = ElementCatalog(backend, config=DetectionConfig(retry_delay=0))

        snapshot = await catalog.catalog()

        assert len(calls) == 2
        assert snapshot.degraded is False
        assert snapshot.interactive_elements[0].text == "Buy"

    @pytest.mark.asyncio
    async def test_gives_up_with_minimal_snapshot(self, backend, dom):
        def always_navigating(config):
            raise NavigationInterruptedError()

        backend.handlers[detector_module.ELEMENT_EXTRACTION_JS] = always_navigating
        snapshot = await ElementCatalog(backend, config=DetectionConfig(retry_delay=0)).catalog()

        assert snapshot.degraded is True
        assert snapshot.interactive_elements == []
        assert snapshot.title == "Shop"

    @pytest.mark.asyncio
    async def test_coordinate_backend_gets_location_only(self, coordinate_backend):
        snapshot = await ElementCatalog(coordinate_backend).catalog()

        assert snapshot.url == "https://shop.example/"
        assert snapshot.viewport.width == 1280
        assert snapshot.interactive_elements == []
        assert coordinate_backend.scripts == []
