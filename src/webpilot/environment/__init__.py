"""Page interaction engine: element catalog, modal detection and action execution."""

from .action_executor import ActionExecutor, ExecutorConfig
from .actions import ACTION_TYPES, Action, parse_action, tool_schemas
from .backends import CoordinateOnlyBackend, PageBackend, PlaywrightPageBackend, create_backend
from .element_detector import DetectionConfig, ElementCatalog
from .modal_detector import ModalDetectionConfig, ModalDetector
from .page_models import InteractiveElement, Modal, PageSnapshot, Viewport
from .tool_response import ToolResult

__all__ = [
    "ActionExecutor",
    "ExecutorConfig",
    "ACTION_TYPES",
    "Action",
    "parse_action",
    "tool_schemas",
    "PageBackend",
    "PlaywrightPageBackend",
    "CoordinateOnlyBackend",
    "create_backend",
    "DetectionConfig",
    "ElementCatalog",
    "ModalDetectionConfig",
    "ModalDetector",
    "InteractiveElement",
    "Modal",
    "PageSnapshot",
    "Viewport",
    "ToolResult",
]
