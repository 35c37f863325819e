"""
Serializable page description models.

Field names are snake_case in Python and camelCase on the wire, matching the
objects the in-page scripts return and the JSON shown to the model. Every model
is frozen: a snapshot is superseded by the next catalog pass, never edited.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PageModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class BoundingRect(PageModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0

    @property
    def center(self):
        return self.x + self.width / 2, self.y + self.height / 2


class Viewport(PageModel):
    width: int
    height: int
    scroll_x: float = 0
    scroll_y: float = 0
    device_pixel_ratio: float = 1.0


class InteractiveElement(PageModel):
    tag: str
    text: str = ""
    selector: str
    aria_label: str = ""
    bounding_rect: BoundingRect = Field(default_factory=BoundingRect)
    visible: bool = True
    in_modal: bool = False
    priority: int = 0
    role: str = ""
    type: str = ""
    href: str = ""
    placeholder: str = ""
    modal_z_index: int = 0


class CloseButton(PageModel):
    selector: str
    text: str = ""
    strategy: str = ""


class Modal(PageModel):
    selector: str
    is_visible: bool
    has_backdrop: bool = False
    close_button: Optional[CloseButton] = None
    interactive_element_count: int = 0
    z_index: int = 0
    ref: str = ""
    source: str = "structural"
    backdrop_selector: Optional[str] = None
    is_native_dialog: bool = False


class LinkInfo(PageModel):
    text: str = ""
    href: str


class ImageInfo(PageModel):
    src: str
    alt: str = ""
    width: int = 0
    height: int = 0


class FormField(PageModel):
    selector: str
    tag: str = "input"
    type: str = ""
    name: str = ""
    placeholder: str = ""
    required: bool = False


class FormInfo(PageModel):
    selector: str
    action: str = ""
    method: str = "get"
    fields: List[FormField] = Field(default_factory=list)


class SearchInput(PageModel):
    selector: str
    name: str = ""
    placeholder: str = ""
    aria_label: str = ""


class AuthenticationState(PageModel):
    has_password_field: bool = False
    requires_login: bool = False


class PageSnapshot(PageModel):
    url: str
    title: str = ""
    text_content: str = ""
    links: List[LinkInfo] = Field(default_factory=list)
    images: List[ImageInfo] = Field(default_factory=list)
    forms: List[FormInfo] = Field(default_factory=list)
    interactive_elements: List[InteractiveElement] = Field(default_factory=list)
    search_inputs: List[SearchInput] = Field(default_factory=list)
    modals: List[Modal] = Field(default_factory=list)
    viewport: Optional[Viewport] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    authentication: AuthenticationState = Field(default_factory=AuthenticationState)
    degraded: bool = False

    @property
    def current_modal(self) -> Optional[Modal]:
        """Highest z-index visible modal; ``modals`` is already sorted."""
        for modal in self.modals:
            if modal.is_visible:
                return modal
        return None

    @property
    def has_active_modals(self) -> bool:
        return self.current_modal is not None

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        data["hasActiveModals"] = self.has_active_modals
        current = self.current_modal
        data["currentModal"] = self.modals.index(current) if current is not None else None
        return data

    def synopsis(self) -> str:
        return f"{self.url} | {self.title} | {len(self.interactive_elements)} interactive elements"
