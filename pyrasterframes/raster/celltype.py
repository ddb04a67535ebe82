from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Literal

import numpy as np

NoDataMode = Literal["constant", "raw", "user"]

# base name -> (numpy dtype, bits, constant NoData value)
_BASES: dict[str, tuple[type, int, float | int | None]] = {
    "bool": (np.bool_, 1, None),
    "int8": (np.int8, 8, -128),
    "uint8": (np.uint8, 8, 0),
    "int16": (np.int16, 16, -32768),
    "uint16": (np.uint16, 16, 0),
    "int32": (np.int32, 32, -2147483648),
    "float32": (np.float32, 32, math.nan),
    "float64": (np.float64, 64, math.nan),
}

_NAME_RE = re.compile(r"^(bool|u?int8|u?int16|int32|float32|float64)(raw|ud(.+))?$")


@dataclass(frozen=True)
class CellType:
    """
    Numeric representation of tile cells, named the GeoTrellis way.

    - `int16`: constant NoData (type minimum, 0 for unsigned, NaN for floats)
    - `int16raw`: no NoData
    - `int16ud-999`: user defined NoData
    """

    base: str
    mode: NoDataMode = "constant"
    user_no_data: float | int | None = None

    def __post_init__(self) -> None:
        if self.base not in _BASES:
            raise ValueError(f"Unknown cell type base: {self.base!r}")
        if self.mode == "user" and self.user_no_data is None:
            raise ValueError("User defined NoData cell types need a NoData value")

    @staticmethod
    def from_name(name: str) -> "CellType":
        text = (name or "").strip().lower()
        m = _NAME_RE.match(text)
        if not m:
            raise ValueError(f"Unknown cell type name: {name!r}")
        base, suffix, ud_value = m.group(1), m.group(2), m.group(3)
        if base == "bool":
            if ud_value is not None:
                raise ValueError(f"Cell type 'bool' has no user defined NoData form: {name!r}")
            return CellType("bool", "raw")
        if suffix is None:
            return CellType(base, "constant")
        if suffix == "raw":
            return CellType(base, "raw")
        try:
            value: float | int = float(ud_value) if base.startswith("float") else int(float(ud_value))
        except ValueError as exc:
            raise ValueError(f"Invalid NoData value in cell type name: {name!r}") from exc
        return CellType(base, "user", value)

    @property
    def name(self) -> str:
        if self.base == "bool":
            return "bool"
        if self.mode == "constant":
            return self.base
        if self.mode == "raw":
            return f"{self.base}raw"
        v = self.user_no_data
        if self.is_floating_point:
            return f"{self.base}ud{float(v)!r}"
        return f"{self.base}ud{int(v)}"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_BASES[self.base][0])

    @property
    def bits(self) -> int:
        return _BASES[self.base][1]

    @property
    def is_floating_point(self) -> bool:
        return self.base.startswith("float")

    @property
    def has_no_data(self) -> bool:
        if self.base == "bool":
            return False
        return self.mode != "raw"

    @property
    def no_data(self) -> float | int | None:
        if not self.has_no_data:
            return None
        if self.mode == "user":
            return self.user_no_data
        return _BASES[self.base][2]

    def with_no_data(self, value: float | int) -> "CellType":
        if self.base == "bool":
            raise ValueError("Cell type 'bool' cannot carry a NoData value")
        default = _BASES[self.base][2]
        if self.is_floating_point:
            if math.isnan(float(value)):
                return CellType(self.base, "constant")
            return CellType(self.base, "user", float(value))
        if int(value) == default:
            return CellType(self.base, "constant")
        return CellType(self.base, "user", int(value))

    def with_default_no_data(self) -> "CellType":
        if self.base == "bool":
            return self
        return CellType(self.base, "constant")

    def without_no_data(self) -> "CellType":
        return CellType(self.base, "raw")

    def union(self, other: "CellType") -> "CellType":
        """
        Smallest cell type able to hold the values of both.
        """
        dt = np.result_type(self.dtype, other.dtype)
        base = _base_for_dtype(dt)
        if base == "bool":
            return CellType("bool", "raw")
        mode: NoDataMode = "constant" if (self.has_no_data or other.has_no_data) else "raw"
        return CellType(base, mode)

    def __str__(self) -> str:
        return self.name


def _base_for_dtype(dt: np.dtype) -> str:
    for base, (np_type, _bits, _nd) in _BASES.items():
        if np.dtype(np_type) == dt:
            return base
    # Widen anything numpy produced that GeoTrellis has no name for.
    if np.issubdtype(dt, np.floating):
        return "float64"
    if np.issubdtype(dt, np.integer):
        return "float64" if dt.itemsize > 4 else "int32"
    raise ValueError(f"No cell type for numpy dtype {dt}")


def cell_type_for_dtype(dt: np.dtype | type, *, no_data: float | int | None = None) -> CellType:
    base = _base_for_dtype(np.dtype(dt))
    if base == "bool":
        return CellType("bool", "raw")
    if no_data is None:
        return CellType(base, "raw")
    return CellType(base, "constant").with_no_data(no_data)


def cell_types() -> list[str]:
    """
    Valid cell type names, with `ud` as the template for user defined NoData.
    """
    out: list[str] = ["bool"]
    for base in _BASES:
        if base == "bool":
            continue
        out.extend([f"{base}raw", base, f"{base}ud"])
    return out
