"""
Shared fixtures: an in-memory page that answers the executor's in-page scripts,
and a scripted model that replays canned responses.
"""

import io
import itertools
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from PIL import Image

from webpilot.agents.exceptions import UnsupportedActionError
from webpilot.environment import action_executor as executor_module
from webpilot.environment import element_detector as detector_module
from webpilot.environment import modal_detector as modal_module
from webpilot.environment.backends import PageBackend
from webpilot.environment.page_models import Viewport
from webpilot.models.response_models import HarmonizedResponse, ResponseMetadata, ToolCall


# ==============================================================================
# Fake DOM
# ==============================================================================


class FakeNode:
    def __init__(self, ref: str, tag: str, text: str = "", selector: Optional[str] = None,
                 modal: Optional[str] = None, visible: bool = True, interactive: bool = True,
                 type: str = "", role: str = "", on_click: Optional[Callable[[str], bool]] = None,
                 order: int = 0):
        self.ref = ref
        self.tag = tag
        self.text = text
        self.selector = selector or f'[data-webpilot-ref="{ref}"]'
        self.modal = modal
        self.visible = visible
        self.interactive = interactive
        self.type = type
        self.role = role
        self.on_click = on_click
        self.value = ""
        self.order = order

    @property
    def is_text_entry(self) -> bool:
        return self.tag == "textarea" or (self.tag == "input" and self.type in ("", "text", "search", "email"))


class FakeDom:
    """
    Just enough of a page for the executor: nodes addressed by ref, modals with
    close affordances, focus and input values.
    """

    def __init__(self, url: str = "https://shop.example/", title: str = "Shop"):
        self.url = url
        self.title = title
        self.nodes: Dict[str, FakeNode] = {}
        self.modals: Dict[str, Dict[str, Any]] = {}
        self.focused: Optional[str] = None
        self.escape_closes: set = set()
        self._order = itertools.count()

    def add_node(self, ref: str, tag: str, **kwargs) -> FakeNode:
        node = FakeNode(ref, tag, order=next(self._order), **kwargs)
        self.nodes[ref] = node
        return node

    def remove_node(self, ref: str) -> None:
        self.nodes.pop(ref, None)

    def add_modal(self, ref: str, selector: str, z_index: int = 1000, close_button: Optional[Dict] = None,
                  has_backdrop: bool = False, visible: bool = True, closes_on_escape: bool = False) -> None:
        self.modals[ref] = {
            "ref": ref,
            "selector": selector,
            "isVisible": visible,
            "hasBackdrop": has_backdrop,
            "closeButton": close_button,
            "zIndex": z_index,
            "source": "structural",
        }
        if closes_on_escape:
            self.escape_closes.add(ref)

    def close_modal(self, ref: str) -> None:
        self.modals.pop(ref, None)
        for node_ref in [r for r, n in self.nodes.items() if n.modal == ref]:
            self.remove_node(node_ref)

    def find_by_selector(self, selector: str) -> List[FakeNode]:
        return [n for n in self.nodes.values() if n.selector == selector]

    def find_by_text(self, text: str) -> List[FakeNode]:
        wanted = text.strip().lower()
        exact = [n for n in self.nodes.values() if n.text.lower() == wanted]
        return exact or [n for n in self.nodes.values() if wanted in n.text.lower()]

    # --- script handlers ---

    def detect_modals(self, config: Dict[str, Any]) -> List[Dict[str, Any]]:
        result = []
        for raw in self.modals.values():
            count = sum(1 for n in self.nodes.values() if n.modal == raw["ref"])
            result.append({**raw, "interactiveElementCount": count})
        return result

    def extract_elements(self, config: Dict[str, Any]) -> Dict[str, Any]:
        modal_refs = set(config.get("modalRefs") or [])
        elements = []
        for node in self.nodes.values():
            if not node.visible:
                continue
            elements.append({
                "tag": node.tag,
                "role": node.role,
                "type": node.type,
                "text": node.text,
                "selector": node.selector,
                "ariaLabel": "",
                "visible": True,
                "modalRef": node.modal if node.modal in modal_refs else None,
                "order": node.order,
            })
        return {
            "url": self.url,
            "title": self.title,
            "textContent": " ".join(n.text for n in self.nodes.values() if n.text),
            "elements": elements,
            "viewport": {"width": 1280, "height": 720},
        }

    def resolve(self, config: Dict[str, Any]) -> Dict[str, Any]:
        if config.get("selector"):
            matches = self.find_by_selector(config["selector"])
            how = "selector"
        else:
            matches = self.find_by_text(config.get("text") or "")
            how = "text"
        if not matches:
            return {"found": False, "reason": f"No element matches {config.get('selector') or config.get('text')!r}"}
        modal_refs = config.get("modalRefs") or []
        matches.sort(key=lambda n: (modal_refs.index(n.modal) if n.modal in modal_refs else len(modal_refs),
                                    not n.visible, n.order))
        node = matches[0]
        return {
            "found": True,
            "ref": node.ref,
            "selector": node.selector,
            "tag": node.tag,
            "text": node.text,
            "interactive": node.interactive,
            "linkLike": node.tag == "a",
            "visible": node.visible,
            "inModal": node.modal in modal_refs,
            "matchedBy": how,
        }

    def click(self, config: Dict[str, Any]) -> Dict[str, Any]:
        node = self.nodes.get(config["ref"])
        if node is None:
            return {"missing": True}
        if config["strategy"] == "descendant" and node.interactive:
            return {"skipped": True}
        effect = bool(node.on_click(config["strategy"])) if node.on_click else False
        return {"effect": effect, "mutations": 1 if effect else 0, "urlChanged": False}

    def focus_for_typing(self, config: Dict[str, Any]) -> Dict[str, Any]:
        node = self.nodes.get(config["ref"])
        if node is None:
            return {"ok": False, "reason": "Element is no longer attached to the page"}
        if not node.is_text_entry:
            return {"ok": False, "reason": f"<{node.tag}> is not a text input"}
        self.focused = node.ref
        if config.get("clear"):
            node.value = ""
        return {"ok": True, "ref": node.ref, "original": node.value, "focused": True}

    def value(self, config: Dict[str, Any]) -> Dict[str, Any]:
        node = self.nodes.get(config["ref"])
        if node is None:
            return {"ok": False, "value": None}
        if config.get("assign") is not None:
            node.value = config["assign"]
        return {"ok": True, "value": node.value}

    def modal_state(self, config: Dict[str, Any]) -> Dict[str, Any]:
        modal = self.modals.get(config["ref"])
        if modal is None:
            return {"exists": False, "visible": False}
        return {"exists": True, "visible": modal["isVisible"]}

    def escape(self, config: Dict[str, Any]) -> Dict[str, Any]:
        if config["ref"] in self.escape_closes:
            self.close_modal(config["ref"])
        return {"dispatched": True}

    def scroll(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {"container": "window", "before": 0, "after": config["delta"], "scrolled": config["delta"],
                "atTop": False, "atBottom": False}


# ==============================================================================
# Fake page backend
# ==============================================================================


def png_bytes(width: int = 1280, height: int = 720) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format="PNG")
    return buffer.getvalue()


class FakePageBackend(PageBackend):
    """PageBackend over a FakeDom; records every input event it receives."""

    def __init__(self, dom: Optional[FakeDom] = None, kind: str = "dom", width: int = 1280, height: int = 720):
        self.dom = dom or FakeDom()
        self.kind = kind
        self._viewport = Viewport(width=width, height=height)
        self.clicks: List[tuple] = []
        self.moves: List[tuple] = []
        self.wheel: List[tuple] = []
        self.typed: List[str] = []
        self.keys: List[str] = []
        self.scripts: List[str] = []
        self.history: List[str] = []
        self.ready = True

        self.handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            modal_module.MODAL_DETECTION_JS: self.dom.detect_modals,
            modal_module.MODAL_STATE_JS: self.dom.modal_state,
            detector_module.ELEMENT_EXTRACTION_JS: self.dom.extract_elements,
            executor_module.RESOLVE_JS: self.dom.resolve,
            executor_module.CLICK_JS: self.dom.click,
            executor_module.FOCUS_FOR_TYPING_JS: self.dom.focus_for_typing,
            executor_module.VALUE_JS: self.dom.value,
            executor_module.ESCAPE_JS: self.dom.escape,
            executor_module.SCROLL_JS: self.dom.scroll,
            executor_module.BACKDROP_POINT_JS: lambda config: None,
            executor_module.NATIVE_CLOSE_JS: lambda config: {"applied": False},
        }
        self.names = {
            modal_module.MODAL_DETECTION_JS: "detect_modals",
            modal_module.MODAL_STATE_JS: "modal_state",
            detector_module.ELEMENT_EXTRACTION_JS: "extract",
            executor_module.RESOLVE_JS: "resolve",
            executor_module.CLICK_JS: "click",
            executor_module.FOCUS_FOR_TYPING_JS: "focus",
            executor_module.VALUE_JS: "value",
            executor_module.ESCAPE_JS: "escape",
            executor_module.SCROLL_JS: "scroll",
            executor_module.BACKDROP_POINT_JS: "backdrop",
            executor_module.NATIVE_CLOSE_JS: "native_close",
        }

    async def url(self) -> str:
        return self.dom.url

    async def title(self) -> str:
        return self.dom.title

    async def viewport(self) -> Viewport:
        return self._viewport

    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        self.history.append(self.dom.url)
        self.dom.url = url

    async def go_back(self, timeout: float = 30.0) -> None:
        if self.history:
            self.dom.url = self.history.pop()

    async def mouse_click(self, x: float, y: float) -> None:
        self.clicks.append((x, y))

    async def mouse_move(self, x: float, y: float) -> None:
        self.moves.append((x, y))

    async def mouse_wheel(self, delta_x: float, delta_y: float) -> None:
        self.wheel.append((delta_x, delta_y))

    async def keyboard_type(self, text: str) -> None:
        self.typed.append(text)
        node = self.dom.nodes.get(self.dom.focused) if self.dom.focused else None
        if node is not None:
            node.value += text

    async def keyboard_press(self, key: str) -> None:
        self.keys.append(key)

    async def screenshot(self) -> bytes:
        return png_bytes(self._viewport.width, self._viewport.height)

    async def wait_ready(self, timeout: float) -> bool:
        return self.ready

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if not self.supports_dom:
            raise UnsupportedActionError("In-page scripts are not available", backend=self.kind)
        if script not in self.handlers:
            raise AssertionError("FakePageBackend received an unknown script")
        self.scripts.append(self.names[script])
        # Round-trip through JSON like the real bridge does
        return json.loads(json.dumps(self.handlers[script](json.loads(json.dumps(arg or {})))))


# ==============================================================================
# Scripted model
# ==============================================================================


_call_ids = itertools.count(1)


def tool_call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> ToolCall:
    return ToolCall(
        id=call_id or f"call_{next(_call_ids)}",
        function={"name": name, "arguments": json.dumps(arguments or {})},
    )


def model_response(content: Optional[str] = None, tool_calls: Optional[List[ToolCall]] = None) -> HarmonizedResponse:
    return HarmonizedResponse(
        content=content,
        tool_calls=tool_calls or [],
        metadata=ResponseMetadata(provider="test", model="scripted"),
    )


class ScriptedModel:
    """Replays responses in order and records the messages of every request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests: List[List[Dict[str, Any]]] = []
        self.tools: List[Any] = []

    async def arun(self, messages, tools=None, max_tokens=None, temperature=None, **kwargs):
        self.requests.append(messages)
        self.tools.append(tools)
        if not self.responses:
            raise AssertionError("ScriptedModel ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def dom():
    return FakeDom()


@pytest.fixture
def backend(dom):
    return FakePageBackend(dom)


@pytest.fixture
def coordinate_backend(dom):
    return FakePageBackend(dom, kind="coordinate")
