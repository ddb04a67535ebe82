from __future__ import annotations

from typing import Any, Mapping, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from engine.config import tile_size

M = TypeVar("M", bound=BaseModel)


class _Options(BaseModel):
    # Generic load/save APIs hand over every option; ignore the ones we don't know.
    model_config = ConfigDict(extra="ignore")

    path: str = Field(min_length=1)

    @field_validator("path")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Valid URI 'path' parameter required.")
        return v


class GeoTiffReadOptions(_Options):
    bandCount: int = Field(default=1, ge=1)
    tileWidth: int = Field(default_factory=tile_size, ge=1)
    tileHeight: int = Field(default_factory=tile_size, ge=1)
    lazyTiles: bool = False

    @property
    def is_collection(self) -> bool:
        return "*" in self.path


class GeoTiffWriteOptions(_Options):
    imageWidth: int | None = Field(default=None, ge=1, le=2**31 - 1)
    imageHeight: int | None = Field(default=None, ge=1, le=2**31 - 1)
    compress: bool = False
    crs: str | None = None

    @field_validator("path")
    @classmethod
    def _local_only(cls, v: str) -> str:
        scheme = (urlparse(v).scheme or "").lower()
        if scheme not in {"", "file"} and len(scheme) != 1:
            raise ValueError("Currently only 'file://' destinations are supported")
        return v

    @property
    def local_path(self) -> str:
        if self.path.startswith("file://"):
            return urlparse(self.path).path
        return self.path

    @property
    def has_dimensions(self) -> bool:
        return self.imageWidth is not None and self.imageHeight is not None


class CatalogOptions(_Options):
    pass


def parse_options(model: type[M], options: Mapping[str, Any] | None = None, **kwargs: Any) -> M:
    """
    Validate a string map of data source options (plus keyword overrides).

    Raises pydantic's `ValidationError` (a `ValueError`) on bad or missing options.
    """
    data: dict[str, Any] = dict(options or {})
    data.update({k: v for k, v in kwargs.items() if v is not None})
    return model.model_validate(data)
