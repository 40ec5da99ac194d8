# src/protocol.py
"""
Message envelope exchanged with the placement worker process.

Three message types, tagged by ``type``:
- ``computePlacement`` (caller -> worker)
- ``placementResult`` (worker -> caller)
- ``error`` (worker -> caller)

Messages travel as plain dicts so they stay picklable and JSON-friendly; placements are an ordered
list of ``[id, {q, r}]`` pairs rather than a mapping.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from models import (
    AxialHex,
    DebugPoint,
    EmbeddingItem,
    NormalizationBounds,
    PlacementConfig,
    PlacementResult,
)

COMPUTE_PLACEMENT = "computePlacement"
PLACEMENT_RESULT = "placementResult"
ERROR = "error"
MESSAGE_TYPES = (COMPUTE_PLACEMENT, PLACEMENT_RESULT, ERROR)


class ProtocolError(ValueError):
    """A message could not be parsed or has an unexpected type."""


class ItemPayload(BaseModel):
    id: str
    embedding: List[float]
    cluster_id: Optional[str] = None


class BoundsPayload(BaseModel):
    min_x: float
    max_x: float
    min_y: float
    max_y: float


class ConfigPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    canvas_width: float = Field(default=900, alias="canvasWidth")
    canvas_height: float = Field(default=600, alias="canvasHeight")
    hex_radius: float = Field(default=14, alias="hexRadius")
    margin: float = 20


class HexPayload(BaseModel):
    q: int
    r: int


class DebugPointPayload(BaseModel):
    id: str
    x: float
    y: float


class ComputePlacementRequest(BaseModel):
    type: Literal["computePlacement"] = COMPUTE_PLACEMENT
    items: List[ItemPayload]
    bounds: BoundsPayload
    config: ConfigPayload = Field(default_factory=ConfigPayload)

    @classmethod
    def build(
        cls,
        items: List[EmbeddingItem],
        bounds: NormalizationBounds,
        config: Optional[PlacementConfig] = None,
    ) -> "ComputePlacementRequest":
        config = config or PlacementConfig.from_env()
        return cls(
            items=[ItemPayload(id=i.id, embedding=list(i.vector), cluster_id=i.cluster_hint) for i in items],
            bounds=BoundsPayload(min_x=bounds.min_x, max_x=bounds.max_x, min_y=bounds.min_y, max_y=bounds.max_y),
            config=ConfigPayload(
                canvas_width=config.canvas_width,
                canvas_height=config.canvas_height,
                hex_radius=config.hex_radius,
                margin=config.margin,
            ),
        )

    def to_items(self) -> List[EmbeddingItem]:
        return [EmbeddingItem(p.id, p.embedding, p.cluster_id) for p in self.items]

    def to_bounds(self) -> NormalizationBounds:
        b = self.bounds
        return NormalizationBounds(b.min_x, b.max_x, b.min_y, b.max_y)

    def to_config(self, max_search_radius: int) -> PlacementConfig:
        c = self.config
        return PlacementConfig(c.canvas_width, c.canvas_height, c.hex_radius, c.margin, max_search_radius)


class PlacementResultMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["placementResult"] = PLACEMENT_RESULT
    placements: List[Tuple[str, HexPayload]]
    debug_points: Optional[List[DebugPointPayload]] = Field(default=None, alias="debugPoints")

    @classmethod
    def from_result(cls, result: PlacementResult) -> "PlacementResultMessage":
        debug = None
        if result.debug_points is not None:
            debug = [DebugPointPayload(id=p.id, x=p.x, y=p.y) for p in result.debug_points]
        return cls(
            placements=[(item_id, HexPayload(q=h.q, r=h.r)) for item_id, h in result.placements.items()],
            debug_points=debug,
        )

    def to_result(self) -> PlacementResult:
        debug = None
        if self.debug_points is not None:
            debug = [DebugPoint(p.id, p.x, p.y) for p in self.debug_points]
        return PlacementResult(
            placements={item_id: AxialHex(h.q, h.r) for item_id, h in self.placements},
            debug_points=debug,
        )


class ErrorMessage(BaseModel):
    type: Literal["error"] = ERROR
    error: str


Message = Annotated[
    Union[ComputePlacementRequest, PlacementResultMessage, ErrorMessage],
    Field(discriminator="type"),
]
_message_adapter: TypeAdapter[Any] = TypeAdapter(Message)


def parse_message(raw: Any) -> Union[ComputePlacementRequest, PlacementResultMessage, ErrorMessage]:
    """Validate a raw dict into one of the three message models."""
    if not isinstance(raw, dict):
        raise ProtocolError(f"Message must be a mapping, got {type(raw).__name__}")
    message_type = raw.get("type")
    if message_type not in MESSAGE_TYPES:
        raise ProtocolError(f"Unknown message type: {message_type}")
    try:
        return _message_adapter.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed '{message_type}' message: {exc.error_count()} validation error(s): {exc}") from exc


def dump_message(message: BaseModel) -> Dict[str, Any]:
    """Plain, JSON-compatible dict using the wire field names."""
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


def error_message(error: str) -> Dict[str, Any]:
    return dump_message(ErrorMessage(error=error))
