from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

RELATIONSHIP_FIELDS = frozenset(
    {
        "parent_id",
        "child_id",
        "loop_first_child_id",
        "loop_last_child_id",
        "value_target_id",
    }
)


def generate_block_id() -> str:
    return str(uuid.uuid4())


class BlockType(str, Enum):
    FLAG = "Flag"
    WORKS = "Works"
    MOVE = "Move"
    COMPOSITION = "Composition"
    LOOP = "Loop"
    VALUE = "Value"


class ConnectionCapability(str, Enum):
    NONE = "None"
    INPUT = "Input"
    OUTPUT = "Output"
    BOTH = "Both"


class ContentType(str, Enum):
    TEXT = "Text"
    CONTENT_VALUE = "ContentValue"
    CONTENT_SELECTOR = "ContentSelector"
    SEPARATOR = "Separator"


class SeparatorKind(str, Enum):
    NONE = "None"
    SPACE = "Space"
    NEWLINE = "Newline"


class ConnectionKind(str, Enum):
    OUTPUT = "output"
    LOOP = "loop"
    VALUE = "value"


class AnchorKind(str, Enum):
    INPUT = "input"
    OUTPUT = "output"
    LOOP = "loop"
    VALUE_INPUT = "value_input"
    VALUE_BODY = "value_body"


DEFAULT_CONNECTIONS: Dict[BlockType, ConnectionCapability] = {
    BlockType.FLAG: ConnectionCapability.OUTPUT,
    BlockType.VALUE: ConnectionCapability.NONE,
}


def default_connection(block_type: BlockType) -> ConnectionCapability:
    return DEFAULT_CONNECTIONS.get(block_type, ConnectionCapability.BOTH)


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0

    @field_validator("x", "y", mode="after")
    @classmethod
    def ensure_finite(cls, value: float) -> float:
        if not math.isfinite(value):
            msg = "Position coordinates must be finite"
            raise ValueError(msg)
        return value

    def shifted(self, dx: float, dy: float) -> Position:
        return Position(x=self.x + dx, y=self.y + dy)

    def distance_to(self, other: Position) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class SelectorOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    value: str = ""


class ContentData(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    value: str = ""
    placeholder: Optional[str] = None
    variables: Optional[str] = None
    options: Tuple[SelectorOption, ...] = ()
    separator: Optional[SeparatorKind] = None


class ContentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: ContentType
    data: ContentData = Field(default_factory=ContentData)

    @property
    def is_value_slot(self) -> bool:
        return self.type is ContentType.CONTENT_VALUE

    def with_variables(self, block_id: Optional[str]) -> ContentItem:
        return self.model_copy(update={"data": self.data.model_copy(update={"variables": block_id})})


class Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: BlockType
    name: str = ""
    title: str = ""
    output: str = ""
    close_output: Optional[str] = None
    position: Position = Field(default_factory=Position)
    size: Optional[Size] = None
    z_index: int = 0
    visibility: bool = True
    connection: ConnectionCapability = ConnectionCapability.BOTH
    draggable: bool = True
    deletable: bool = True
    parent_id: Optional[str] = None
    child_id: Optional[str] = None
    loop_first_child_id: Optional[str] = None
    loop_last_child_id: Optional[str] = None
    value_target_id: Optional[str] = None
    content: Tuple[ContentItem, ...] = ()

    @field_validator("content", mode="after")
    @classmethod
    def ensure_unique_content_ids(
        cls, content: Tuple[ContentItem, ...]
    ) -> Tuple[ContentItem, ...]:
        seen: Set[str] = set()
        for item in content:
            if item.id in seen:
                msg = f"Duplicate content id found: {item.id}"
                raise ValueError(msg)
            seen.add(item.id)
        return content

    @property
    def is_loop(self) -> bool:
        return self.type is BlockType.LOOP

    @property
    def is_value(self) -> bool:
        return self.type is BlockType.VALUE

    def value_slots(self) -> List[ContentItem]:
        return [item for item in self.content if item.is_value_slot]

    def find_content(self, content_id: str) -> Optional[ContentItem]:
        return next((item for item in self.content if item.id == content_id), None)

    def free_value_slot(self, content_id: Optional[str] = None) -> Optional[ContentItem]:
        for item in self.value_slots():
            if content_id is not None and item.id != content_id:
                continue
            if not item.data.variables:
                return item
        return None

    def value_bindings(self) -> Dict[str, str]:
        return {
            item.id: item.data.variables for item in self.value_slots() if item.data.variables
        }


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Position:
        return Position(x=self.left + self.width / 2, y=self.top + self.height / 2)

    @classmethod
    def around(cls, center: Position, width: float, height: float) -> Rect:
        return cls(center.x - width / 2, center.y - height / 2, width, height)

    def translated(self, dx: float, dy: float) -> Rect:
        return Rect(self.left + dx, self.top + dy, self.width, self.height)

    def intersects(self, other: Rect) -> bool:
        return not (
            self.right < other.left
            or self.left > other.right
            or self.bottom < other.top
            or self.top > other.bottom
        )

    def intersection_area(self, other: Rect) -> float:
        width = min(self.right, other.right) - max(self.left, other.left)
        height = min(self.bottom, other.bottom) - max(self.top, other.top)
        if width <= 0 or height <= 0:
            return 0.0
        return width * height


@dataclass(frozen=True)
class Viewport:
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0


@dataclass(frozen=True)
class ContainerSize:
    width: float
    height: float
