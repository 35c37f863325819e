"""
Element Catalog

Scans the live page and produces a ranked, serializable PageSnapshot: capped
text content, links, images, forms, search inputs, interactive elements and the
modal list, plus viewport metrics.

Features:
- Bounded document-ready wait; proceeds with a degraded marker on timeout
- Stable selectors (unique id/name, else a stamped node reference)
- Tag/role base scores with a flat bonus for elements inside a visible modal
- Caps on every list surfaced to the model
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from webpilot.agents.exceptions import NavigationInterruptedError
from webpilot.environment.dom_scripts import INTERACTIVE_SELECTORS, base_config, build_script
from webpilot.environment.modal_detector import ModalDetector
from webpilot.environment.page_models import (
    InteractiveElement,
    Modal,
    PageSnapshot,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Base score per element kind (higher = more likely to be the intended target)
BASE_SCORES = {
    'button': 10,
    'submit': 9,
    'input': 8,
    'link': 7,
    'select': 7,
    'checkbox': 6,
    'tab': 5,
    'menuitem': 5,
    'option': 4,
    'clickable': 3,
    'focusable': 2,
    'generic': 1,
}

# Elements with an accessible name are slightly preferred
NAMED_ELEMENT_BONUS = 1

MAX_BASE_SCORE = max(BASE_SCORES.values()) + NAMED_ELEMENT_BONUS

TEXT_INPUT_TYPES = {'', 'text', 'search', 'email', 'password', 'url', 'tel', 'number', 'date'}


@dataclass
class DetectionConfig:
    """Configuration for a catalog pass."""
    selectors: List[str] = field(default_factory=lambda: INTERACTIVE_SELECTORS.copy())

    # Caps on what is surfaced to the model
    max_text_length: int = 10000
    max_links: int = 50
    max_images: int = 20
    max_interactive_elements: int = 30
    max_search_inputs: int = 10
    max_element_text: int = 100

    # Elements this far outside the viewport (px) still count as visible
    viewport_margin: int = 100

    # Document-ready wait before scanning
    ready_timeout: float = 5.0
    retry_delay: float = 0.3

    def to_js(self, modal_refs: List[str]) -> Dict[str, Any]:
        return base_config({
            "interactiveSelectors": self.selectors,
            "maxTextLength": self.max_text_length,
            "maxLinks": self.max_links,
            "maxImages": self.max_images,
            "maxSearchInputs": self.max_search_inputs,
            "maxElementText": self.max_element_text,
            "viewportMargin": self.viewport_margin,
            "modalRefs": modal_refs,
        })


# =============================================================================
# JavaScript Code for In-Page Execution
# =============================================================================

ELEMENT_EXTRACTION_JS = build_script("""
    const margin = config.viewportMargin;
    const modalNodes = config.modalRefs.map(ref => [ref, byRef(ref)]).filter(([ref, el]) => el);

    function modalRefFor(el) {
        // modalRefs arrive ordered topmost first
        for (const [ref, modal] of modalNodes) {
            if (modal.contains(el)) return ref;
        }
        return null;
    }

    const elements = [];
    const seen = new Set();
    let order = 0;
    let nodes = [];
    try { nodes = document.querySelectorAll(INTERACTIVE_QUERY); } catch (e) {}
    for (const el of nodes) {
        if (seen.has(el)) continue;
        seen.add(el);
        if (!isDisplayed(el)) continue;
        const rect = el.getBoundingClientRect();
        if (!inViewport(rect, margin)) continue;
        elements.push({
            tag: el.tagName.toLowerCase(),
            role: el.getAttribute('role') || '',
            type: (el.getAttribute('type') || '').toLowerCase(),
            text: textOf(el, config.maxElementText),
            selector: selectorFor(el),
            ariaLabel: el.getAttribute('aria-label') || '',
            href: el.getAttribute('href') || '',
            placeholder: el.getAttribute('placeholder') || '',
            hasOnclick: el.hasAttribute('onclick'),
            tabindex: el.getAttribute('tabindex'),
            contentEditable: el.isContentEditable,
            boundingRect: rectOf(el),
            visible: true,
            modalRef: modalRefFor(el),
            order: order++,
        });
    }

    const links = [];
    for (const a of document.querySelectorAll('a[href]')) {
        if (links.length >= config.maxLinks) break;
        if (!isDisplayed(a)) continue;
        links.push({text: textOf(a, config.maxElementText), href: a.href});
    }

    const images = [];
    for (const img of document.images) {
        if (images.length >= config.maxImages) break;
        if (!isDisplayed(img) || !img.currentSrc && !img.src) continue;
        const r = img.getBoundingClientRect();
        if (r.width < 16 || r.height < 16) continue;
        images.push({src: img.currentSrc || img.src, alt: img.alt || '',
                     width: Math.round(r.width), height: Math.round(r.height)});
    }

    const forms = [];
    for (const form of document.forms) {
        const fields = [];
        for (const input of form.querySelectorAll('input, select, textarea')) {
            const type = (input.getAttribute('type') || '').toLowerCase();
            if (type === 'hidden') continue;
            fields.push({
                selector: selectorFor(input),
                tag: input.tagName.toLowerCase(),
                type: type,
                name: input.getAttribute('name') || '',
                placeholder: input.getAttribute('placeholder') || '',
                required: input.required === true,
            });
        }
        forms.push({
            selector: selectorFor(form),
            action: form.getAttribute('action') || '',
            method: (form.getAttribute('method') || 'get').toLowerCase(),
            fields: fields,
        });
    }

    const searchInputs = [];
    const searchPattern = /search|^q$/i;
    for (const input of document.querySelectorAll('input, [role="searchbox"], [role="combobox"]')) {
        if (searchInputs.length >= config.maxSearchInputs) break;
        if (!isDisplayed(input)) continue;
        const type = (input.getAttribute('type') || '').toLowerCase();
        const hints = [input.getAttribute('name'), input.id, input.getAttribute('placeholder'),
                       input.getAttribute('aria-label')].filter(Boolean);
        const isSearch = type === 'search' || input.getAttribute('role') === 'searchbox' ||
                         hints.some(h => searchPattern.test(h));
        if (!isSearch) continue;
        searchInputs.push({
            selector: selectorFor(input),
            name: input.getAttribute('name') || '',
            placeholder: input.getAttribute('placeholder') || '',
            ariaLabel: input.getAttribute('aria-label') || '',
        });
    }

    const passwordFields = Array.from(document.querySelectorAll('input[type="password"]')).filter(isDisplayed);
    const loginText = /sign in|log in|login/i.test(document.title || '');

    const meta = {};
    const description = document.querySelector('meta[name="description"]');
    if (description && description.content) meta.description = description.content;
    const keywords = document.querySelector('meta[name="keywords"]');
    if (keywords && keywords.content) meta.keywords = keywords.content;

    const bodyText = document.body ? (document.body.innerText || '') : '';

    return {
        url: location.href,
        title: document.title || '',
        textContent: bodyText.substring(0, config.maxTextLength),
        links: links,
        images: images,
        forms: forms,
        elements: elements,
        searchInputs: searchInputs,
        viewport: {
            width: window.innerWidth,
            height: window.innerHeight,
            scrollX: window.scrollX,
            scrollY: window.scrollY,
            devicePixelRatio: window.devicePixelRatio || 1,
        },
        metadata: meta,
        authentication: {
            hasPasswordField: passwordFields.length > 0,
            requiresLogin: passwordFields.length > 0 || loginText,
        },
    };
""")


# =============================================================================
# Scoring
# =============================================================================

def element_kind(raw: Dict[str, Any]) -> str:
    """Classify a raw element for base scoring."""
    tag = raw.get("tag", "")
    role = raw.get("role", "")
    el_type = raw.get("type", "")

    if tag == "button" or role == "button" or (tag == "input" and el_type in ("button", "reset", "image")):
        return "submit" if el_type == "submit" else "button"
    if tag == "input" and el_type == "submit":
        return "submit"
    if tag in ("textarea",) or (tag == "input" and el_type in TEXT_INPUT_TYPES) \
            or role in ("textbox", "searchbox", "combobox") or raw.get("contentEditable"):
        return "input"
    if tag == "select" or role == "listbox":
        return "select"
    if tag == "a" or role == "link":
        return "link"
    if el_type in ("checkbox", "radio", "file") or role in ("checkbox", "radio", "switch"):
        return "checkbox"
    if role == "tab":
        return "tab"
    if role == "menuitem":
        return "menuitem"
    if role == "option":
        return "option"
    if raw.get("hasOnclick"):
        return "clickable"
    if raw.get("tabindex") is not None:
        return "focusable"
    return "generic"


def base_score(raw: Dict[str, Any]) -> int:
    score = BASE_SCORES[element_kind(raw)]
    if raw.get("text") or raw.get("ariaLabel"):
        score += NAMED_ELEMENT_BONUS
    return score


# =============================================================================
# Catalog Class
# =============================================================================

class ElementCatalog:
    """
    Builds PageSnapshots from a page backend.

    Usage:
        catalog = ElementCatalog(backend)
        snapshot = await catalog.catalog()
    """

    def __init__(
        self,
        backend,
        config: Optional[DetectionConfig] = None,
        modal_detector: Optional[ModalDetector] = None,
    ):
        self.backend = backend
        self.config = config or DetectionConfig()
        self.modal_detector = modal_detector or ModalDetector(backend)
        if self.modal_detector.config.priority_bonus <= MAX_BASE_SCORE:
            raise ValueError(
                f"Modal priority bonus ({self.modal_detector.config.priority_bonus}) must exceed "
                f"the largest base score ({MAX_BASE_SCORE})"
            )

    async def catalog(self) -> PageSnapshot:
        """Scan the page. Never raises for page-side failures; returns a degraded snapshot instead."""
        ready = await self.backend.wait_ready(self.config.ready_timeout)
        if not self.backend.supports_dom:
            # Screenshot-grounded sessions only get location and viewport
            return await self.minimal_snapshot(degraded=not ready)
        if not ready:
            logger.warning(
                f"Document not ready after {self.config.ready_timeout}s, cataloguing a page in flux"
            )

        last_error: Optional[Exception] = None
        for attempt in range(2):
            try:
                modals = await self.modal_detector.detect()
                visible_refs = [m.ref for m in modals if m.is_visible and m.ref]
                raw_page = await self.backend.evaluate(
                    ELEMENT_EXTRACTION_JS, self.config.to_js(visible_refs)
                )
                return self.build_snapshot(raw_page, modals, degraded=not ready)
            except NavigationInterruptedError as e:
                last_error = e
                logger.debug(f"Page navigated during catalog pass (attempt {attempt + 1}): {e}")
                await asyncio.sleep(self.config.retry_delay)
                await self.backend.wait_ready(self.config.ready_timeout)

        logger.warning(f"Catalog pass failed, returning degraded snapshot: {last_error}")
        return await self.minimal_snapshot(degraded=True)

    async def minimal_snapshot(self, degraded: bool = False) -> PageSnapshot:
        """Snapshot from what the backend can report without page scripts."""
        return PageSnapshot(
            url=await self.backend.url(),
            title=await self.backend.title(),
            viewport=await self.backend.viewport(),
            degraded=degraded,
        )

    def build_snapshot(
        self,
        raw_page: Dict[str, Any],
        modals: List[Modal],
        degraded: bool = False,
    ) -> PageSnapshot:
        modal_z = {m.ref: m.z_index for m in modals if m.is_visible and m.ref}
        elements = self.rank_elements(raw_page.get("elements", []), modal_z)

        return PageSnapshot.model_validate({
            "url": raw_page.get("url", ""),
            "title": raw_page.get("title", ""),
            "textContent": raw_page.get("textContent", "")[: self.config.max_text_length],
            "links": raw_page.get("links", [])[: self.config.max_links],
            "images": raw_page.get("images", [])[: self.config.max_images],
            "forms": raw_page.get("forms", []),
            "interactiveElements": elements,
            "searchInputs": raw_page.get("searchInputs", [])[: self.config.max_search_inputs],
            "modals": modals,
            "viewport": raw_page.get("viewport"),
            "metadata": raw_page.get("metadata", {}),
            "authentication": raw_page.get("authentication", {}),
            "degraded": degraded,
        })

    def rank_elements(
        self, raw_elements: List[Dict[str, Any]], modal_z: Dict[str, int]
    ) -> List[InteractiveElement]:
        """Score, sort and cap raw elements. ``modal_z`` maps visible modal refs to z-index."""
        bonus = self.modal_detector.config.priority_bonus
        ranked = []
        for raw in raw_elements:
            modal_ref = raw.get("modalRef")
            in_modal = modal_ref is not None and modal_ref in modal_z
            priority = base_score(raw) + (bonus if in_modal else 0)
            element = InteractiveElement.model_validate({
                **raw,
                "inModal": in_modal,
                "priority": priority,
                "modalZIndex": modal_z.get(modal_ref, 0) if in_modal else 0,
            })
            ranked.append((element, raw.get("order", 0)))

        ranked.sort(key=lambda item: (-item[0].priority, -item[0].modal_z_index, item[1]))
        return [element for element, _ in ranked[: self.config.max_interactive_elements]]
