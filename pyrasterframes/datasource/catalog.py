"""
`geotrellis-catalog` data source: lists the layers of a file-backed GeoTrellis catalog.

Layer attributes live in `<base>/attributes/<name>__.__<zoom>__.__metadata.json` as a
two element JSON array: the layer id and the attribute object (header + metadata).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import duckdb
from pydantic import BaseModel, ConfigDict, Field

from datasource.options import CatalogOptions, parse_options
from datasource.raster_source import normalize_uri
from engine.frames import create_relation
from raster.layout import TileLayerMetadata

logger = logging.getLogger(__name__)

SHORT_NAME = "geotrellis-catalog"

_SEP = "__.__"
_SUFFIX = f"{_SEP}metadata.json"


@dataclass(frozen=True)
class LayerId:
    name: str
    zoom: int


@dataclass(frozen=True)
class Layer:
    base: str
    id: LayerId

    @property
    def attributes_path(self) -> Path:
        return Path(normalize_uri(self.base)) / "attributes" / f"{self.id.name}{_SEP}{self.id.zoom}{_SUFFIX}"


class LayerHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    format: str = "file"
    keyClass: str = ""
    valueClass: str = ""
    path: str = ""


class LayerAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    header: LayerHeader = Field(default_factory=LayerHeader)
    metadata: dict[str, Any]


def _parse_attributes(path: Path) -> tuple[LayerId, LayerAttributes]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list) or len(raw) != 2:
        raise ValueError(f"Unexpected layer attribute layout in {path}")
    ident, attrs = raw
    return LayerId(str(ident["name"]), int(ident["zoom"])), LayerAttributes.model_validate(attrs)


def list_layers(base: str) -> list[Layer]:
    root = Path(normalize_uri(base)) / "attributes"
    if not root.is_dir():
        raise FileNotFoundError(f"No GeoTrellis catalog attributes under {base}")
    out: list[Layer] = []
    for p in sorted(root.glob(f"*{_SEP}*{_SUFFIX}")):
        ident, _ = _parse_attributes(p)
        out.append(Layer(base, ident))
    return out


def read_layer_metadata(layer: Layer) -> TileLayerMetadata:
    _ident, attrs = _parse_attributes(layer.attributes_path)
    return TileLayerMetadata.from_dict(attrs.metadata)


def read_geotrellis_catalog(
    conn: duckdb.DuckDBPyConnection, options: Mapping[str, Any] | None = None, **kwargs: Any
) -> duckdb.DuckDBPyRelation:
    """
    One row per layer: id, header fields and the layer metadata as JSON text.
    """
    opts = parse_options(CatalogOptions, options, **kwargs)
    rows: list[list[Any]] = []
    for i, layer in enumerate(list_layers(opts.path)):
        _ident, attrs = _parse_attributes(layer.attributes_path)
        md = attrs.metadata
        h = attrs.header
        rows.append(
            [
                i,
                layer.id.name,
                layer.id.zoom,
                h.format,
                h.keyClass,
                h.valueClass,
                h.path,
                _json_field(md, "cellType"),
                _json_field(md, "crs"),
                _json_field(md, "extent"),
                _json_field(md, "bounds"),
                _json_field(md, "layoutDefinition"),
            ]
        )
    logger.debug("Found %d layers in catalog %s", len(rows), opts.path)
    columns = [
        ("index", "int"),
        ("layer", "varchar"),
        ("zoom", "int"),
        ("format", "varchar"),
        ("keyClass", "varchar"),
        ("valueClass", "varchar"),
        ("path", "varchar"),
        ("cellType", "varchar"),
        ("crs", "varchar"),
        ("extent", "varchar"),
        ("bounds", "varchar"),
        ("layoutDefinition", "varchar"),
    ]
    return create_relation(conn, columns, rows)


def _json_field(md: dict[str, Any], key: str) -> str | None:
    v = md.get(key)
    if v is None:
        return None
    return v if isinstance(v, str) else json.dumps(v)
