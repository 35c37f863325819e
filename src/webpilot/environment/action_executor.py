"""
Action Executor

Performs one primitive browser action against the live page and always answers
with a ToolResult. Failures of the action itself (no such element, no observable
effect, bad arguments, unsupported on this backend) come back as failed results
so the model can choose another approach; nothing escapes as an exception.

Features:
- Exhaustive handler map over the closed action union (checked at construction)
- Layered click: direct activation -> interactive descendant -> synthetic pointer
  sequence at the element's center, each verified by observed effect
- Four-strategy modal close: close button -> Escape -> backdrop click -> native close
- Exact 0-1000 grid scaling for coordinate actions
- Settle policy: longer wait after navigation-class actions
"""

import asyncio
import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from PIL import Image
from playwright.async_api import Error as PlaywrightError

from webpilot.agents.exceptions import (
    ActionEffectError,
    ActionValidationError,
    ElementResolutionError,
    NavigationInterruptedError,
    UnsupportedActionError,
    WebPilotError,
)
from webpilot.agents.utils import session_extra
from webpilot.coordination.config import SettleConfig
from webpilot.environment.actions import (
    ACTION_CLASSES,
    SETTLE_DEFAULT,
    MAX_MODAL_WAIT_MS,
    SETTLE_NAVIGATION,
    BaseAction,
    ClickAction,
    ClickElementAction,
    CloseModalAction,
    GetPageContextAction,
    GoBackAction,
    HoverAction,
    NavigateAction,
    PressKeyAction,
    ScreenshotAction,
    ScrollAction,
    TypeAction,
    WaitForModalAction,
    parse_action,
)
from webpilot.environment.coordinates import scale_point
from webpilot.environment.dom_scripts import (
    INTERACTIVE_DESCENDANT_SELECTOR,
    base_config,
    build_script,
)
from webpilot.environment.element_detector import ElementCatalog
from webpilot.environment.modal_detector import ModalDetector, current_modal
from webpilot.environment.page_models import Modal
from webpilot.environment.tool_response import ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ExecutorConfig:
    """Timing knobs for the executor."""
    settle: SettleConfig = field(default_factory=SettleConfig)

    # How long a click watches the page for a reaction (ms)
    click_observe_ms: int = 300

    # Pause between a close strategy and the visibility check (s)
    close_check_delay: float = 0.3

    # Poll interval for wait_for_modal (s)
    modal_poll_interval: float = 0.25

    navigation_timeout: float = 20.0

    # Strategy fallbacks, effect checks and the post-action page-state read (s)
    overhead: float = 5.0

    def longest_action(self) -> float:
        """Upper bound on one action, settle included, in seconds."""
        return max(self.navigation_timeout, MAX_MODAL_WAIT_MS / 1000) + self.settle.navigation + self.overhead


# =============================================================================
# JavaScript Code for In-Page Execution
# =============================================================================

VALUE_SETTER_JS = """
    function setNativeValue(el, value) {
        const proto = el.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
        const descriptor = Object.getOwnPropertyDescriptor(proto, 'value');
        if (descriptor && descriptor.set) descriptor.set.call(el, value);
        else el.value = value;
    }
"""

RESOLVE_JS = build_script("""
    const modals = (config.modalRefs || []).map(byRef).filter(Boolean);
    const descendantQuery = config.descendantSelector;

    function modalRank(el) {
        for (let i = 0; i < modals.length; i++) {
            if (modals[i].contains(el)) return i;
        }
        return modals.length;
    }

    function isInteractive(el) {
        try {
            return el.matches(descendantQuery) || (INTERACTIVE_QUERY !== '' && el.matches(INTERACTIVE_QUERY));
        } catch (e) {
            return false;
        }
    }

    function describeTarget(el, how) {
        const type = (el.getAttribute('type') || '').toLowerCase();
        const submits = type === 'submit' || (el.tagName === 'BUTTON' && el.form && type !== 'button' && type !== 'reset');
        return {
            found: true,
            ref: refOf(el),
            selector: selectorFor(el),
            tag: el.tagName.toLowerCase(),
            text: textOf(el, 100),
            interactive: isInteractive(el),
            linkLike: !!el.closest('a[href]') || submits,
            visible: isDisplayed(el),
            inModal: modalRank(el) < modals.length,
            matchedBy: how,
        };
    }

    function rank(candidates) {
        // Modal content first (topmost modal first), then visible, then the rest
        return candidates
            .map((c, index) => ({...c, index, modal: modalRank(c.el), visible: isDisplayed(c.el)}))
            .sort((a, b) => (a.modal - b.modal) ||
                            ((b.visible ? 1 : 0) - (a.visible ? 1 : 0)) ||
                            ((b.exact ? 1 : 0) - (a.exact ? 1 : 0)) ||
                            (a.length - b.length) ||
                            (a.index - b.index));
    }

    if (config.selector) {
        let nodes;
        try {
            nodes = Array.from(document.querySelectorAll(config.selector));
        } catch (e) {
            return {found: false, reason: `Invalid CSS selector '${config.selector}'`};
        }
        if (!nodes.length) {
            return {found: false, reason: `No element matches selector '${config.selector}'`};
        }
        const best = rank(nodes.map(el => ({el, exact: true, length: 0})))[0];
        return describeTarget(best.el, 'selector');
    }

    const wanted = String(config.text || '').trim().toLowerCase().replace(/\\s+/g, ' ');
    if (!wanted) return {found: false, reason: 'Empty text query'};

    const matches = [];
    let nodes = [];
    try { nodes = document.querySelectorAll(INTERACTIVE_QUERY); } catch (e) {}
    for (const el of nodes) {
        const label = textOf(el, 0).toLowerCase();
        if (!label) continue;
        if (label === wanted) matches.push({el, exact: true, length: label.length});
        else if (label.includes(wanted)) matches.push({el, exact: false, length: label.length});
    }

    if (!matches.length && document.body) {
        // Plain text nodes: the innermost element whose own text is the query
        for (const el of document.body.getElementsByTagName('*')) {
            const label = String(el.innerText || '').trim().toLowerCase().replace(/\\s+/g, ' ');
            if (label !== wanted) continue;
            const innerMatch = Array.from(el.children).some(
                child => String(child.innerText || '').trim().toLowerCase().replace(/\\s+/g, ' ') === wanted
            );
            if (!innerMatch) matches.push({el, exact: true, length: label.length});
        }
    }

    if (!matches.length) {
        return {found: false, reason: `No element with text '${config.text}'`};
    }
    const best = rank(matches)[0];
    return describeTarget(best.el, best.exact ? 'text' : 'partial_text');
""")

CLICK_JS = build_script("""
    const el = byRef(config.ref);
    if (!el) return {missing: true};

    let target = el;
    if (config.strategy === 'descendant') {
        target = Array.from(el.querySelectorAll(config.descendantSelector)).find(isDisplayed) || null;
        if (!target) return {skipped: true};
    }

    const watched = target.matches('input, select, textarea') ? target : null;
    const before = {
        url: location.href,
        active: document.activeElement,
        checked: watched ? watched.checked : null,
        value: watched ? watched.value : null,
        expanded: target.getAttribute('aria-expanded'),
    };

    let mutations = 0;
    const count = records => {
        for (const record of records) {
            if (record.type === 'attributes' && record.attributeName === REF_ATTR) continue;
            mutations++;
        }
    };
    const observer = new MutationObserver(count);
    observer.observe(document.documentElement, {
        subtree: true, childList: true, attributes: true, characterData: true,
    });

    try {
        if (config.strategy === 'pointer') {
            target.scrollIntoView({block: 'center', inline: 'center'});
            const r = target.getBoundingClientRect();
            const x = r.left + r.width / 2;
            const y = r.top + r.height / 2;
            const hit = document.elementFromPoint(x, y);
            const receiver = hit && (target.contains(hit) || hit.contains(target)) ? hit : target;
            const init = {bubbles: true, cancelable: true, composed: true, view: window,
                          clientX: x, clientY: y, button: 0};
            const pointer = {...init, pointerId: 1, isPrimary: true, pointerType: 'mouse'};
            receiver.dispatchEvent(new PointerEvent('pointerdown', pointer));
            receiver.dispatchEvent(new MouseEvent('mousedown', init));
            receiver.dispatchEvent(new MouseEvent('click', init));
            receiver.dispatchEvent(new MouseEvent('mouseup', init));
            receiver.dispatchEvent(new PointerEvent('pointerup', pointer));
        } else {
            target.click();
        }
        await new Promise(resolve => setTimeout(resolve, config.observeMs));
        count(observer.takeRecords());
    } finally {
        observer.disconnect();
    }

    const urlChanged = location.href !== before.url;
    const focusChanged = document.activeElement !== before.active;
    const stateChanged = watched
        ? (watched.checked !== before.checked || watched.value !== before.value)
        : target.getAttribute('aria-expanded') !== before.expanded;
    return {
        effect: mutations > 0 || urlChanged || focusChanged || stateChanged,
        mutations: mutations,
        urlChanged: urlChanged,
        focusChanged: focusChanged,
        stateChanged: stateChanged,
        targetTag: target.tagName.toLowerCase(),
    };
""")

FOCUS_FOR_TYPING_JS = build_script(VALUE_SETTER_JS + """
    const el = byRef(config.ref);
    if (!el) return {ok: false, reason: 'Element is no longer attached to the page'};

    let target = el;
    if (!isTextEntry(target)) {
        const inner = Array.from(el.querySelectorAll('input, textarea, [contenteditable="true"]'))
            .find(child => isTextEntry(child) && isDisplayed(child));
        if (!inner) return {ok: false, reason: `<${el.tagName.toLowerCase()}> is not a text input`};
        target = inner;
    }

    target.scrollIntoView({block: 'center', inline: 'nearest'});
    target.focus();
    if (config.clear) {
        if (target.isContentEditable) target.textContent = '';
        else setNativeValue(target, '');
        target.dispatchEvent(new Event('input', {bubbles: true}));
    }
    const value = target.isContentEditable ? target.innerText : target.value;
    return {ok: true, ref: refOf(target), original: value || '', focused: document.activeElement === target};
""")

VALUE_JS = build_script(VALUE_SETTER_JS + """
    const el = byRef(config.ref);
    if (!el) return {ok: false, value: null};
    if (config.assign !== null && config.assign !== undefined) {
        if (el.isContentEditable) el.textContent = config.assign;
        else setNativeValue(el, config.assign);
        el.dispatchEvent(new Event('input', {bubbles: true}));
    }
    el.dispatchEvent(new Event('change', {bubbles: true}));
    return {ok: true, value: el.isContentEditable ? el.innerText : el.value};
""")

SCROLL_JS = build_script("""
    const root = document.scrollingElement || document.documentElement;
    let container = null;
    if (root.scrollHeight <= window.innerHeight + 1 && document.body) {
        // Page itself does not scroll: use the largest scrollable element
        let bestArea = 0;
        for (const el of document.body.getElementsByTagName('*')) {
            if (el.scrollHeight <= el.clientHeight + 1) continue;
            const overflow = window.getComputedStyle(el).overflowY;
            if (overflow !== 'auto' && overflow !== 'scroll' && overflow !== 'overlay') continue;
            if (!isDisplayed(el)) continue;
            const r = el.getBoundingClientRect();
            const area = r.width * r.height;
            if (area > bestArea) {
                container = el;
                bestArea = area;
            }
        }
    }

    const position = () => container ? container.scrollTop : window.scrollY;
    const before = position();
    (container || window).scrollBy({top: config.delta, left: 0, behavior: 'instant'});
    await new Promise(resolve => setTimeout(resolve, 50));
    const after = position();
    const max = container
        ? container.scrollHeight - container.clientHeight
        : root.scrollHeight - window.innerHeight;
    return {
        container: container ? selectorFor(container) : 'window',
        before: Math.round(before),
        after: Math.round(after),
        scrolled: Math.round(after - before),
        atTop: after <= 0,
        atBottom: after >= max - 1,
    };
""")

ESCAPE_JS = build_script("""
    const el = byRef(config.ref);
    if (!el) return {dispatched: false};
    const focusable = el.querySelector('button, [href], input, select, textarea, [tabindex]');
    const receiver = el.contains(document.activeElement) ? document.activeElement : (focusable || el);
    const init = {key: 'Escape', code: 'Escape', keyCode: 27, which: 27,
                  bubbles: true, cancelable: true, composed: true};
    receiver.dispatchEvent(new KeyboardEvent('keydown', init));
    receiver.dispatchEvent(new KeyboardEvent('keyup', init));
    return {dispatched: true};
""")

BACKDROP_POINT_JS = build_script("""
    const modal = byRef(config.ref);
    if (!modal) return null;
    let backdrop = null;
    if (config.backdropSelector) {
        try { backdrop = document.querySelector(config.backdropSelector); } catch (e) {}
    }
    if (!backdrop) return null;

    const vw = window.innerWidth;
    const vh = window.innerHeight;
    const inset = 8;
    const points = [
        [inset, inset], [vw - inset, inset], [inset, vh - inset], [vw - inset, vh - inset],
        [vw / 2, inset], [vw / 2, vh - inset], [inset, vh / 2], [vw - inset, vh / 2],
    ];
    for (const [x, y] of points) {
        const hit = document.elementFromPoint(x, y);
        if (!hit) continue;
        if (backdrop === modal) {
            // Full-screen wrapper or native dialog: only the wrapper itself, never its panel
            if (hit === modal) return {x: Math.round(x), y: Math.round(y)};
            continue;
        }
        if ((hit === backdrop || backdrop.contains(hit)) && !modal.contains(hit)) {
            return {x: Math.round(x), y: Math.round(y)};
        }
    }
    return null;
""")

NATIVE_CLOSE_JS = build_script("""
    const el = byRef(config.ref);
    if (!el) return {applied: false};
    if (el.tagName === 'DIALOG' && typeof el.close === 'function') {
        el.close();
        return {applied: true, method: 'dialog.close'};
    }
    let popoverOpen = false;
    try { popoverOpen = el.matches(':popover-open'); } catch (e) {}
    if (popoverOpen && typeof el.hidePopover === 'function') {
        el.hidePopover();
        return {applied: true, method: 'hidePopover'};
    }
    const dialog = el.closest('dialog[open]') || el.querySelector('dialog[open]');
    if (dialog) {
        dialog.close();
        return {applied: true, method: 'dialog.close'};
    }
    return {applied: false};
""")


CLOSE_STRATEGIES = ("close_button", "escape", "backdrop", "native_close")


# =============================================================================
# Executor Class
# =============================================================================

class ActionExecutor:
    """
    Executes actions from the closed action union against one page backend.

    Usage:
        executor = ActionExecutor(backend)
        result = await executor.execute_call("click_element", {"text": "Accept"})
    """

    def __init__(
        self,
        backend,
        catalog: Optional[ElementCatalog] = None,
        modal_detector: Optional[ModalDetector] = None,
        config: Optional[ExecutorConfig] = None,
        session_id: Optional[str] = None,
    ):
        self.backend = backend
        self.modal_detector = modal_detector or ModalDetector(backend)
        self.catalog = catalog or ElementCatalog(backend, modal_detector=self.modal_detector)
        self.config = config or ExecutorConfig()
        self.session_id = session_id

        self._handlers: Dict[type, Callable[[Any], Awaitable[ToolResult]]] = {
            NavigateAction: self._navigate,
            GoBackAction: self._go_back,
            ClickElementAction: self._click_element,
            ClickAction: self._click_at,
            HoverAction: self._hover,
            TypeAction: self._type,
            ScrollAction: self._scroll,
            PressKeyAction: self._press_key,
            GetPageContextAction: self._get_page_context,
            ScreenshotAction: self._screenshot,
            WaitForModalAction: self._wait_for_modal,
            CloseModalAction: self._close_modal,
        }
        missing = [cls.__name__ for cls in ACTION_CLASSES if cls not in self._handlers]
        if missing:
            raise TypeError(f"ActionExecutor has no handler for: {', '.join(missing)}")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute_call(self, name: str, arguments: Any) -> ToolResult:
        """Validate a raw tool call and execute it."""
        try:
            action = parse_action(name, arguments)
        except ActionValidationError as e:
            logger.info(f"Rejected tool call '{name}': {e.developer_message}", extra=session_extra(self.session_id))
            return await self._attach_page_state(ToolResult.from_error(e))
        return await self.execute(action)

    async def execute(self, action: BaseAction) -> ToolResult:
        """Execute one action. Never raises for page-side or argument failures."""
        handler = self._handlers[type(action)]
        started = time.time()
        url_before = await self.backend.url()

        try:
            if action.requires_dom and not self.backend.supports_dom:
                raise UnsupportedActionError(
                    f"'{action.name}' needs DOM access, which the {self.backend.kind} backend does not have",
                    backend=self.backend.kind,
                    action=action.name,
                )
            result = await handler(action)
        except WebPilotError as e:
            logger.info(f"Action '{action.name}' failed: {e.developer_message}", extra=session_extra(self.session_id))
            result = ToolResult.from_error(e)
        except PlaywrightError as e:
            logger.warning(f"Browser error during '{action.name}': {e}", extra=session_extra(self.session_id))
            result = ToolResult.failure(str(e).splitlines()[0] if str(e) else repr(e), "browser")
        except Exception as e:
            # The executor boundary never lets an exception reach the loop
            logger.error(f"Unexpected error during '{action.name}': {e}", exc_info=True,
                         extra=session_extra(self.session_id))
            result = ToolResult.from_error(e)

        if result.success:
            settle_class = await self._settle_class(action, result, url_before)
            delay = self.config.settle.delay_for(settle_class)
            if delay:
                await asyncio.sleep(delay)

        logger.debug(
            f"Action '{action.name}' finished in {time.time() - started:.2f}s (success={result.success})",
            extra=session_extra(self.session_id),
        )
        return await self._attach_page_state(result)

    async def _settle_class(self, action: BaseAction, result: ToolResult, url_before: str) -> str:
        if action.settle != SETTLE_DEFAULT:
            return action.settle
        if isinstance(result.data, dict) and (result.data.get("navigated") or result.data.get("may_navigate")):
            return SETTLE_NAVIGATION
        if isinstance(action, TypeAction) and action.submit:
            return SETTLE_NAVIGATION
        if await self.backend.url() != url_before:
            return SETTLE_NAVIGATION
        return SETTLE_DEFAULT

    async def _attach_page_state(self, result: ToolResult) -> ToolResult:
        try:
            return result.with_page_state(await self.backend.url(), await self.backend.viewport())
        except PlaywrightError as e:
            logger.warning(f"Could not read page state after action: {e}", extra=session_extra(self.session_id))
            return result

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def _navigate(self, action: NavigateAction) -> ToolResult:
        await self.backend.navigate(action.url, timeout=self.config.navigation_timeout)
        return ToolResult(success=True, data={"url": action.url, "navigated": True})

    async def _go_back(self, action: GoBackAction) -> ToolResult:
        await self.backend.go_back(timeout=self.config.navigation_timeout)
        return ToolResult(success=True, data={"navigated": True})

    # ------------------------------------------------------------------
    # Element resolution
    # ------------------------------------------------------------------

    async def _visible_modals(self) -> List[Modal]:
        return [m for m in await self.modal_detector.detect() if m.is_visible]

    async def resolve(self, selector: Optional[str] = None, text: Optional[str] = None) -> Dict[str, Any]:
        """
        Resolve a selector or text query to a live node, preferring content of the
        topmost visible modal, then visible elements.

        Raises:
            ElementResolutionError: Nothing matches.
        """
        modals = await self._visible_modals()
        target = await self.backend.evaluate(RESOLVE_JS, base_config({
            "selector": selector,
            "text": text,
            "modalRefs": [m.ref for m in modals if m.ref],
            "descendantSelector": INTERACTIVE_DESCENDANT_SELECTOR,
        }))
        if not target or not target.get("found"):
            reason = (target or {}).get("reason") or "No matching element"
            raise ElementResolutionError(reason, selector=selector, text=text)
        return target

    # ------------------------------------------------------------------
    # Clicking
    # ------------------------------------------------------------------

    async def _click_element(self, action: ClickElementAction) -> ToolResult:
        target = await self.resolve(selector=action.selector, text=action.text)
        strategy, attempts, outcome = await self.layered_click(target)
        return ToolResult(
            success=True,
            attempts=attempts,
            data={
                "strategy": strategy,
                "element": {k: target.get(k) for k in ("tag", "text", "selector", "inModal")},
                "navigated": bool(outcome.get("urlChanged") or outcome.get("navigated")),
                "may_navigate": bool(target.get("linkLike")),
            },
        )

    async def layered_click(self, target: Dict[str, Any]) -> Tuple[str, List[str], Dict[str, Any]]:
        """
        Try click strategies in order until one produces an observable effect.

        Returns:
            ``(winning strategy, strategies attempted, effect report)``

        Raises:
            ElementResolutionError: The node disappeared before it could be clicked.
            ActionEffectError: Every strategy ran without any observable effect.
        """
        strategies = ["direct"]
        if not target.get("interactive"):
            strategies.append("descendant")
        strategies.append("pointer")

        attempts: List[str] = []
        for strategy in strategies:
            try:
                outcome = await self.backend.evaluate(CLICK_JS, base_config({
                    "ref": target["ref"],
                    "strategy": strategy,
                    "observeMs": self.config.click_observe_ms,
                    "descendantSelector": INTERACTIVE_DESCENDANT_SELECTOR,
                }))
            except NavigationInterruptedError:
                # The click replaced the document
                attempts.append(strategy)
                return strategy, attempts, {"effect": True, "navigated": True}

            outcome = outcome or {}
            if outcome.get("skipped"):
                continue
            if outcome.get("missing"):
                raise ElementResolutionError(
                    "Element was removed from the page before it could be clicked",
                    selector=target.get("selector"),
                )
            attempts.append(strategy)
            if outcome.get("effect"):
                return strategy, attempts, outcome
            logger.debug(
                f"Click strategy '{strategy}' had no visible effect on {target.get('selector')}",
                extra=session_extra(self.session_id),
            )

        raise ActionEffectError(
            f"Clicking {target.get('selector')} produced no page change (tried: {', '.join(attempts)})",
            attempts=attempts,
            action="click_element",
        )

    async def _scaled_point(self, x: float, y: float) -> Tuple[int, int]:
        viewport = await self.backend.viewport()
        return scale_point(x, y, viewport.width, viewport.height)

    async def _click_at(self, action: ClickAction) -> ToolResult:
        px, py = await self._scaled_point(action.x, action.y)
        await self.backend.mouse_click(px, py)
        return ToolResult(success=True, data={"grid": [action.x, action.y], "pixels": [px, py]})

    async def _hover(self, action: HoverAction) -> ToolResult:
        px, py = await self._scaled_point(action.x, action.y)
        await self.backend.mouse_move(px, py)
        return ToolResult(success=True, data={"grid": [action.x, action.y], "pixels": [px, py]})

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    async def _type(self, action: TypeAction) -> ToolResult:
        if action.selector is None:
            await self.backend.keyboard_type(action.text)
            if action.submit:
                await self.backend.keyboard_press("Enter")
            return ToolResult(success=True, data={"typed": len(action.text), "target": "focused element"})

        if not self.backend.supports_dom:
            raise UnsupportedActionError(
                "Typing into a selector needs DOM access; omit 'selector' to type into the focused element",
                backend=self.backend.kind,
                action="type",
            )

        target = await self.resolve(selector=action.selector)
        focus = await self.backend.evaluate(
            FOCUS_FOR_TYPING_JS, base_config({"ref": target["ref"], "clear": action.clear})
        )
        if not focus.get("ok"):
            raise ElementResolutionError(focus.get("reason", "Element cannot receive text"), selector=action.selector)

        attempts = ["keyboard"]
        await self.backend.keyboard_type(action.text)
        state = await self.backend.evaluate(VALUE_JS, base_config({"ref": focus["ref"], "assign": None}))
        value = state.get("value") or ""

        if action.text not in value:
            # Frameworks that swallow synthetic key events still accept the native setter
            attempts.append("value_setter")
            expected = focus.get("original", "") + action.text
            state = await self.backend.evaluate(VALUE_JS, base_config({"ref": focus["ref"], "assign": expected}))
            value = state.get("value") or ""
            if action.text not in value:
                raise ActionEffectError(
                    f"Text did not appear in {action.selector}",
                    attempts=attempts,
                    action="type",
                )

        if action.submit:
            await self.backend.keyboard_press("Enter")

        return ToolResult(
            success=True,
            attempts=attempts,
            data={"typed": len(action.text), "selector": target.get("selector"), "submitted": action.submit},
        )

    async def _press_key(self, action: PressKeyAction) -> ToolResult:
        try:
            await self.backend.keyboard_press(action.key)
        except PlaywrightError as e:
            if "Unknown key" in str(e):
                raise ActionValidationError(f"Unknown key '{action.key}'", arguments={"key": action.key}) from e
            raise
        return ToolResult(success=True, data={"key": action.key})

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    async def _scroll(self, action: ScrollAction) -> ToolResult:
        delta = action.amount if action.direction == "down" else -action.amount
        if not self.backend.supports_dom:
            viewport = await self.backend.viewport()
            await self.backend.mouse_move(viewport.width / 2, viewport.height / 2)
            await self.backend.mouse_wheel(0, delta)
            return ToolResult(success=True, data={"direction": action.direction, "amount": action.amount})

        report = await self.backend.evaluate(SCROLL_JS, base_config({"delta": delta}))
        return ToolResult(success=True, data={"direction": action.direction, "amount": action.amount, **report})

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def _get_page_context(self, action: GetPageContextAction) -> ToolResult:
        snapshot = await self.catalog.catalog()
        return ToolResult(success=True, data=snapshot.to_wire())

    async def _screenshot(self, action: ScreenshotAction) -> ToolResult:
        png = await self.backend.screenshot()
        with Image.open(io.BytesIO(png)) as image:
            width, height = image.size
        encoded = base64.b64encode(png).decode("ascii")
        return ToolResult(
            success=True,
            data={"width": width, "height": height, "format": "png"},
            screenshot=f"data:image/png;base64,{encoded}",
        )

    # ------------------------------------------------------------------
    # Modals
    # ------------------------------------------------------------------

    async def _wait_for_modal(self, action: WaitForModalAction) -> ToolResult:
        deadline = time.monotonic() + action.timeout / 1000
        while True:
            try:
                modal = current_modal(await self.modal_detector.detect())
            except NavigationInterruptedError:
                modal = None
            if modal is not None:
                return ToolResult(success=True, data={"modal": modal.to_wire()})
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.config.modal_poll_interval)
        return ToolResult.failure(f"No modal appeared within {action.timeout} ms", "resolution")

    async def _modal_closed(self, modal: Modal) -> bool:
        if self.config.close_check_delay:
            await asyncio.sleep(self.config.close_check_delay)
        try:
            exists, visible = await self.modal_detector.modal_state(modal.ref)
        except NavigationInterruptedError:
            return True
        return not exists or not visible

    async def _close_modal(self, action: CloseModalAction) -> ToolResult:
        if not self.backend.supports_dom:
            # Nothing to verify against without DOM access
            await self.backend.keyboard_press("Escape")
            return ToolResult(success=True, attempts=["escape"], data={"strategy": "escape", "verified": False})

        modal = current_modal(await self.modal_detector.detect())
        if modal is None:
            raise ElementResolutionError("No visible modal to close")

        attempts: List[str] = []
        skipped: List[str] = []
        for strategy in CLOSE_STRATEGIES:
            try:
                tried = await self._apply_close_strategy(strategy, modal)
            except NavigationInterruptedError:
                attempts.append(strategy)
                return self._closed(modal, strategy, attempts)
            except ElementResolutionError as e:
                logger.debug(f"Close strategy '{strategy}' could not resolve its target: {e}")
                skipped.append(strategy)
                continue

            if not tried:
                skipped.append(strategy)
                continue
            attempts.append(strategy)
            if await self._modal_closed(modal):
                return self._closed(modal, strategy, attempts)
            logger.debug(f"Modal {modal.selector} still visible after '{strategy}'",
                         extra=session_extra(self.session_id))

        raise ActionEffectError(
            f"Modal {modal.selector} is still visible after all close strategies "
            f"(tried: {', '.join(attempts) or 'none'}; unavailable: {', '.join(skipped) or 'none'})",
            attempts=attempts,
            action="close_modal",
            context={"skipped": skipped, "modal": modal.selector},
        )

    def _closed(self, modal: Modal, strategy: str, attempts: List[str]) -> ToolResult:
        return ToolResult(
            success=True,
            attempts=attempts,
            data={"strategy": strategy, "modal": modal.selector},
        )

    async def _apply_close_strategy(self, strategy: str, modal: Modal) -> bool:
        """Run one close strategy. Returns False when the strategy does not apply to this modal."""
        if strategy == "close_button":
            if modal.close_button is None:
                return False
            target = await self.resolve(selector=modal.close_button.selector)
            await self.backend.evaluate(CLICK_JS, base_config({
                "ref": target["ref"],
                "strategy": "direct",
                "observeMs": self.config.click_observe_ms,
                "descendantSelector": INTERACTIVE_DESCENDANT_SELECTOR,
            }))
            return True

        if strategy == "escape":
            await self.backend.evaluate(ESCAPE_JS, base_config({"ref": modal.ref}))
            if await self._modal_closed(modal):
                return True
            # Native modal dialogs only react to a trusted key press
            await self.backend.keyboard_press("Escape")
            return True

        if strategy == "backdrop":
            if not modal.has_backdrop:
                return False
            point = await self.backend.evaluate(BACKDROP_POINT_JS, base_config({
                "ref": modal.ref,
                "backdropSelector": modal.backdrop_selector,
            }))
            if not point:
                return False
            await self.backend.mouse_click(point["x"], point["y"])
            return True

        if strategy == "native_close":
            outcome = await self.backend.evaluate(NATIVE_CLOSE_JS, base_config({"ref": modal.ref}))
            return bool(outcome and outcome.get("applied"))

        raise ValueError(f"Unknown close strategy '{strategy}'")
