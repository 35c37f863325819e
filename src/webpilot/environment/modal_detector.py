"""
Modal / Dialog Detection

Finds overlay surfaces that should own the interaction while they are visible.

Features:
- Structural strategy: dialog roles, aria-modal, native <dialog>, class-name and
  data-attribute patterns, cookie/consent banners
- Heuristic strategy: positioned elements above a z-index threshold that cover a
  large share of the viewport
- Union of both strategies deduplicated by node identity
- Close affordance discovery (ARIA label -> text/class -> data attribute)
- Backdrop discovery for click-outside dismissal

Nothing is cached: pages rewrite their DOM continuously, so every call re-detects.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from webpilot.environment.dom_scripts import base_config, build_script
from webpilot.environment.page_models import Modal

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STRUCTURAL_MODAL_SELECTORS = [
    'dialog[open]',
    '[role="dialog"]',
    '[role="alertdialog"]',
    '[aria-modal="true"]',
    '[data-modal]',
    '[data-dialog]',
    '[data-testid*="modal" i]',
    '[data-testid*="dialog" i]',
    'div[class*="modal" i]',
    'div[class*="dialog" i]',
    'div[class*="popup" i]',
    'div[class*="lightbox" i]',
    'div[id*="cookie" i]',
    'div[class*="cookie" i]',
    'div[id*="consent" i]',
    'div[class*="consent" i]',
    'section[id*="cookie" i]',
    'aside[class*="cookie" i]',
]

# Checked in order; the first text with a visible match inside the modal wins
DEFAULT_CLOSE_TEXTS = [
    "×",
    "✕",
    "x",
    "close",
    "dismiss",
    "accept",
    "accept all",
    "allow all",
    "got it",
    "i agree",
    "agree",
    "ok",
    "no thanks",
    "not now",
    "continue",
]

CLOSE_LABEL_PATTERN = r"close|dismiss|schlie(ss|ß)en|fermer|cerrar|chiudi|fechar|закрыть|閉じる|关闭|關閉|닫기"
CLOSE_CLASS_PATTERN = r"(^|[\s_-])(close|dismiss)([\s_-]|$)|btn-close|close-button|closebutton"

CLOSE_DATA_SELECTORS = [
    '[data-dismiss]',
    '[data-bs-dismiss]',
    '[data-close]',
    '[data-action*="close" i]',
    '[data-action*="dismiss" i]',
    '[data-testid*="close" i]',
]


@dataclass
class ModalDetectionConfig:
    """Configuration for modal detection. Thresholds are tunable; modal dominance is not."""
    structural_selectors: List[str] = field(default_factory=lambda: STRUCTURAL_MODAL_SELECTORS.copy())
    z_index_threshold: int = 1000
    min_viewport_coverage: float = 0.3
    priority_bonus: int = 20
    close_texts: List[str] = field(default_factory=lambda: DEFAULT_CLOSE_TEXTS.copy())
    close_label_pattern: str = CLOSE_LABEL_PATTERN
    close_class_pattern: str = CLOSE_CLASS_PATTERN
    close_data_selectors: List[str] = field(default_factory=lambda: CLOSE_DATA_SELECTORS.copy())
    backdrop_coverage: float = 0.9

    def __post_init__(self):
        if not 0 < self.min_viewport_coverage < 1:
            raise ValueError("min_viewport_coverage must be between 0 and 1")
        if not 0 < self.backdrop_coverage <= 1:
            raise ValueError("backdrop_coverage must be in (0, 1]")

    def to_js(self) -> Dict[str, Any]:
        return base_config({
            "structuralSelectors": self.structural_selectors,
            "zIndexThreshold": self.z_index_threshold,
            "minCoverage": self.min_viewport_coverage,
            "closeTexts": [t.lower() for t in self.close_texts],
            "closeLabelPattern": self.close_label_pattern,
            "closeClassPattern": self.close_class_pattern,
            "closeDataSelectors": self.close_data_selectors,
            "backdropCoverage": self.backdrop_coverage,
        })


# =============================================================================
# JavaScript Code for In-Page Execution
# =============================================================================

MODAL_DETECTION_JS = build_script("""
    const vw = window.innerWidth;
    const vh = window.innerHeight;
    const viewportArea = Math.max(vw * vh, 1);

    function coverageOf(rect) {
        const w = Math.max(0, Math.min(rect.right, vw) - Math.max(rect.left, 0));
        const h = Math.max(0, Math.min(rect.bottom, vh) - Math.max(rect.top, 0));
        return (w * h) / viewportArea;
    }

    function markerOf(el) {
        const cls = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');
        return (cls + ' ' + (el.id || '')).toLowerCase();
    }

    function isBackdropLike(el) {
        return /backdrop|scrim/.test(markerOf(el));
    }

    // node -> 'structural' | 'heuristic' | 'both'
    const seen = new Map();

    for (const selector of config.structuralSelectors) {
        let nodes = [];
        try { nodes = document.querySelectorAll(selector); } catch (e) { continue; }
        for (const el of nodes) {
            if (!isBackdropLike(el) && !seen.has(el)) seen.set(el, 'structural');
        }
    }

    const everything = document.body ? document.body.getElementsByTagName('*') : [];
    for (const el of everything) {
        const style = window.getComputedStyle(el);
        if (style.position !== 'fixed' && style.position !== 'absolute') continue;
        const z = parseInt(style.zIndex, 10);
        if (isNaN(z) || z <= config.zIndexThreshold) continue;
        if (coverageOf(el.getBoundingClientRect()) <= config.minCoverage) continue;
        if (isBackdropLike(el)) continue;
        seen.set(el, seen.get(el) === 'structural' ? 'both' : 'heuristic');
    }

    // Pattern matches nested inside another structural match (modal-header,
    // cookie-banner__inner, ...) belong to that outer candidate.
    const structural = Array.from(seen.entries())
        .filter(([el, source]) => source !== 'heuristic')
        .map(([el]) => el);
    const candidates = Array.from(seen.keys()).filter(
        el => !structural.some(outer => outer !== el && outer.contains(el))
    );

    const labelPattern = new RegExp(config.closeLabelPattern, 'i');
    const classPattern = new RegExp(config.closeClassPattern, 'i');

    function describe(el, strategy) {
        return {selector: selectorFor(el), text: textOf(el, 50), strategy: strategy};
    }

    function findCloseButton(modal) {
        const controls = Array.from(modal.querySelectorAll(
            'button, [role="button"], a, input[type="button"], input[type="submit"], [onclick], span, i'
        )).filter(isDisplayed);

        for (const el of controls) {
            const label = (el.getAttribute('aria-label') || el.getAttribute('title') || '').trim();
            if (label && labelPattern.test(label)) return describe(el, 'aria');
        }
        for (const wanted of config.closeTexts) {
            for (const el of controls) {
                const text = String(el.innerText || el.value || '').trim().toLowerCase();
                if (text === wanted) return describe(el, 'text');
            }
        }
        for (const el of controls) {
            if (classPattern.test(markerOf(el))) return describe(el, 'class');
        }
        for (const selector of config.closeDataSelectors) {
            let el = null;
            try { el = modal.querySelector(selector); } catch (e) {}
            if (el && isDisplayed(el)) return describe(el, 'data-attribute');
        }
        return null;
    }

    function findBackdrop(modal) {
        if (modal.tagName === 'DIALOG') {
            let nativeModal = false;
            try { nativeModal = modal.matches(':modal'); } catch (e) {}
            if (nativeModal) return modal;
        }
        for (const el of document.querySelectorAll('body *')) {
            if (el === modal || el.contains(modal) || modal.contains(el)) continue;
            if (!/backdrop|overlay|scrim|mask/.test(markerOf(el))) continue;
            if (!isDisplayed(el)) continue;
            const style = window.getComputedStyle(el);
            if (style.position !== 'fixed' && style.position !== 'absolute') continue;
            if (coverageOf(el.getBoundingClientRect()) >= config.backdropCoverage) return el;
        }
        // Full-screen wrapper around a smaller content panel: the wrapper is the backdrop
        if (coverageOf(modal.getBoundingClientRect()) >= config.backdropCoverage) {
            const panel = Array.from(modal.children).find(
                child => isDisplayed(child) && coverageOf(child.getBoundingClientRect()) < config.backdropCoverage
            );
            if (panel) return modal;
        }
        return null;
    }

    const results = [];
    for (const el of candidates) {
        const visible = isDisplayed(el);
        const backdrop = visible ? findBackdrop(el) : null;
        let count = 0;
        if (INTERACTIVE_QUERY) {
            for (const child of el.querySelectorAll(INTERACTIVE_QUERY)) {
                if (isDisplayed(child)) count++;
            }
        }
        results.push({
            ref: refOf(el),
            selector: selectorFor(el),
            isVisible: visible,
            hasBackdrop: backdrop !== null,
            backdropSelector: backdrop ? selectorFor(backdrop) : null,
            closeButton: visible ? findCloseButton(el) : null,
            interactiveElementCount: count,
            zIndex: zIndexOf(el),
            source: seen.get(el),
            isNativeDialog: el.tagName === 'DIALOG',
        });
    }
    return results;
""")

MODAL_STATE_JS = build_script("""
    const el = byRef(config.ref);
    if (!el) return {exists: false, visible: false};
    return {exists: true, visible: isDisplayed(el) && !(el.tagName === 'DIALOG' && !el.open)};
""")


# =============================================================================
# Detector Class
# =============================================================================

def sort_modals(modals: List[Modal]) -> List[Modal]:
    """Visible modals first, each group by descending z-index; the head is the current modal."""
    return sorted(modals, key=lambda m: (not m.is_visible, -m.z_index))


def current_modal(modals: List[Modal]) -> Optional[Modal]:
    for modal in sort_modals(modals):
        if modal.is_visible:
            return modal
    return None


class ModalDetector:
    """
    Detects modal surfaces on a page backend.

    Usage:
        detector = ModalDetector(backend)
        modals = await detector.detect()
        top = current_modal(modals)
    """

    def __init__(self, backend, config: Optional[ModalDetectionConfig] = None):
        self.backend = backend
        self.config = config or ModalDetectionConfig()

    async def detect(self) -> List[Modal]:
        raw = await self.backend.evaluate(MODAL_DETECTION_JS, self.config.to_js())
        return self.select(raw or [])

    def select(self, raw_modals: List[Dict[str, Any]]) -> List[Modal]:
        """Deduplicate raw candidates by node reference and order them."""
        by_ref: Dict[str, Modal] = {}
        for raw in raw_modals:
            try:
                modal = Modal.model_validate(raw)
            except ValueError as e:
                logger.debug(f"Skipping malformed modal candidate {raw!r}: {e}")
                continue
            key = modal.ref or modal.selector
            existing = by_ref.get(key)
            if existing is None:
                by_ref[key] = modal
            elif existing.source != modal.source:
                by_ref[key] = existing.model_copy(update={"source": "both"})
        return sort_modals(list(by_ref.values()))

    async def modal_state(self, ref: str) -> Tuple[bool, bool]:
        """Return ``(exists, visible)`` for a previously detected modal."""
        state = await self.backend.evaluate(MODAL_STATE_JS, base_config({"ref": ref}))
        return bool(state.get("exists")), bool(state.get("visible"))
