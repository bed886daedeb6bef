from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tilesets.errors import InvalidLayerTypeError, InvalidTileFormatError, MetadataError


class TileFormat(str, Enum):
    UNKNOWN = ""
    PBF = "pbf"
    PNG = "png"
    JPG = "jpg"
    WEBP = "webp"
    GZIP = "gzip"
    ZLIB = "zlib"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "TileFormat":
        """Strict text -> format; raises on anything that is not a known name."""
        try:
            return cls(text)
        except ValueError:
            raise InvalidTileFormatError(f"invalid or unknown tile format: {text!r}") from None

    @classmethod
    def lookup(cls, text: str) -> "TileFormat":
        """Lenient text -> format; unrecognized names map to UNKNOWN."""
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES.get(self, "")


_CONTENT_TYPES = {
    TileFormat.PBF: "application/x-protobuf",
    TileFormat.PNG: "image/png",
    TileFormat.JPG: "image/jpeg",
    TileFormat.WEBP: "image/webp",
}


class LayerType(str, Enum):
    BASELAYER = "baselayer"
    OVERLAY = "overlay"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "LayerType":
        try:
            return cls(text)
        except ValueError:
            raise InvalidLayerTypeError(f"invalid or unknown layer type: {text!r}") from None

    @classmethod
    def lookup(cls, text: str) -> Optional["LayerType"]:
        """Text -> layer type, or None when the name is not recognized."""
        try:
            return cls(text)
        except ValueError:
            return None


@dataclass(frozen=True)
class TileCoord:
    """
    Validated tile address. `row` is in the archive's bottom-origin (TMS)
    scheme; build instances with `tilesets.coords.parse_tile_coord`.
    """
    zoom: int
    column: int
    row: int


# ---------- metadata ----------

def _get(d: Mapping[str, Any], key: str, typ: Any, default: Any, where: str) -> Any:
    value = d.get(key, default)
    if value is None:
        return default
    # bool is an int subclass; reject it where a count is expected
    if typ is int and isinstance(value, bool):
        raise MetadataError(f"{where}.{key}: expected int, got bool")
    if not isinstance(value, typ):
        raise MetadataError(f"{where}.{key}: expected {getattr(typ, '__name__', typ)}, got {type(value).__name__}")
    return value


def _as_mapping(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MetadataError(f"{where}: expected an object, got {type(value).__name__}")
    return value


def _as_list(value: Any, where: str) -> List[Any]:
    if not isinstance(value, list):
        raise MetadataError(f"{where}: expected an array, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class VectorLayer:
    id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    minzoom: int = 0
    maxzoom: int = 0

    @classmethod
    def from_dict(cls, d: Any) -> "VectorLayer":
        d = _as_mapping(d, "vector_layers[]")
        return cls(
            id=_get(d, "id", str, "", "vector_layers[]"),
            fields=dict(_get(d, "fields", dict, {}, "vector_layers[]")),
            description=_get(d, "description", str, "", "vector_layers[]"),
            minzoom=_get(d, "minzoom", int, 0, "vector_layers[]"),
            maxzoom=_get(d, "maxzoom", int, 0, "vector_layers[]"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "fields": self.fields}
        if self.description:
            out["description"] = self.description
        if self.minzoom:
            out["minzoom"] = self.minzoom
        if self.maxzoom:
            out["maxzoom"] = self.maxzoom
        return out


@dataclass(frozen=True)
class AttributeStats:
    """Cardinality of one feature attribute inside a layer."""
    attribute: str
    count: int
    type: str
    values: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Any) -> "AttributeStats":
        d = _as_mapping(d, "attributes[]")
        return cls(
            attribute=_get(d, "attribute", str, "", "attributes[]"),
            count=_get(d, "count", int, 0, "attributes[]"),
            type=_get(d, "type", str, "", "attributes[]"),
            values=list(_get(d, "values", list, [], "attributes[]")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"attribute": self.attribute, "count": self.count, "type": self.type, "values": self.values}


@dataclass(frozen=True)
class LayerStats:
    layer: str
    count: int
    geometry: str
    attribute_count: int
    attributes: List[AttributeStats] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Any) -> "LayerStats":
        d = _as_mapping(d, "layers[]")
        attrs = _as_list(d.get("attributes") or [], "layers[].attributes")
        return cls(
            layer=_get(d, "layer", str, "", "layers[]"),
            count=_get(d, "count", int, 0, "layers[]"),
            geometry=_get(d, "geometry", str, "", "layers[]"),
            attribute_count=_get(d, "attributeCount", int, 0, "layers[]"),
            attributes=[AttributeStats.from_dict(a) for a in attrs],
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "layer": self.layer,
            "count": self.count,
            "geometry": self.geometry,
            "attributeCount": self.attribute_count,
        }
        if self.attributes:
            out["attributes"] = [a.to_dict() for a in self.attributes]
        return out


@dataclass(frozen=True)
class TileStats:
    layer_count: int
    layers: List[LayerStats] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Any) -> "TileStats":
        d = _as_mapping(d, "tilestats")
        layers = _as_list(d.get("layers") or [], "tilestats.layers")
        return cls(
            layer_count=_get(d, "layerCount", int, 0, "tilestats"),
            layers=[LayerStats.from_dict(layer) for layer in layers],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"layerCount": self.layer_count, "layers": [layer.to_dict() for layer in self.layers]}


@dataclass(frozen=True)
class LayerData:
    """The decoded `json` metadata row (vector layer schema and statistics)."""
    vector_layers: Optional[List[VectorLayer]] = None
    tilestats: Optional[TileStats] = None

    @classmethod
    def from_dict(cls, d: Any) -> "LayerData":
        d = _as_mapping(d, "json")
        layers = d.get("vector_layers")
        stats = d.get("tilestats")
        return cls(
            vector_layers=None if layers is None else [VectorLayer.from_dict(v) for v in _as_list(layers, "vector_layers")],
            tilestats=None if stats is None else TileStats.from_dict(stats),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.vector_layers is not None:
            out["vector_layers"] = [v.to_dict() for v in self.vector_layers]
        if self.tilestats is not None:
            out["tilestats"] = self.tilestats.to_dict()
        return out


@dataclass
class Metadata:
    name: str = ""
    description: str = ""
    attribution: str = ""
    version: str = ""
    format: TileFormat = TileFormat.UNKNOWN
    type: LayerType = LayerType.BASELAYER
    minzoom: int = 0
    maxzoom: int = 0
    bounds: Optional[Tuple[float, float, float, float]] = None
    center: Optional[Tuple[float, float, float]] = None
    layer_data: Optional[LayerData] = None
