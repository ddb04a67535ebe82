import math

import numpy as np
import pytest

from raster.celltype import CellType, cell_type_for_dtype, cell_types


def test_constant_no_data_names_and_values():
    assert CellType.from_name("int16").no_data == -32768
    assert CellType.from_name("uint8").no_data == 0
    assert CellType.from_name("int32").no_data == -2147483648
    assert math.isnan(CellType.from_name("float32").no_data)
    assert CellType.from_name("int8").name == "int8"


def test_raw_and_bool_have_no_no_data():
    assert not CellType.from_name("int16raw").has_no_data
    assert CellType.from_name("int16raw").name == "int16raw"
    b = CellType.from_name("bool")
    assert not b.has_no_data
    assert b.name == "bool"
    assert b.bits == 1


def test_user_defined_no_data_round_trips_through_name():
    ct = CellType.from_name("int16ud-999")
    assert ct.no_data == -999
    assert ct.name == "int16ud-999"
    f = CellType.from_name("float32ud-1.5")
    assert f.no_data == -1.5
    assert CellType.from_name(f.name) == f


def test_unknown_names_are_rejected():
    with pytest.raises(ValueError):
        CellType.from_name("int64")
    with pytest.raises(ValueError):
        CellType.from_name("boolud1")


def test_with_no_data_collapses_to_constant_form():
    assert CellType.from_name("int16raw").with_no_data(-32768) == CellType.from_name("int16")
    assert CellType.from_name("float64raw").with_no_data(float("nan")).name == "float64"
    assert CellType.from_name("uint8").with_no_data(255).name == "uint8ud255"


def test_union_widens():
    assert CellType.from_name("uint8").union(CellType.from_name("int16")).base == "int16"
    assert CellType.from_name("int16").union(CellType.from_name("float32")).base == "float32"


def test_cell_type_for_dtype_uses_no_data():
    assert cell_type_for_dtype(np.uint16).name == "uint16raw"
    assert cell_type_for_dtype(np.int16, no_data=-32768).name == "int16"
    assert cell_type_for_dtype(np.float32, no_data=-9999.0).name == "float32ud-9999.0"


def test_cell_types_lists_every_base():
    names = cell_types()
    assert "bool" in names
    for base in ("int8", "uint8", "int16", "uint16", "int32", "float32", "float64"):
        assert base in names
        assert f"{base}raw" in names
        assert f"{base}ud" in names


def test_without_no_data_drops_to_raw():
    assert CellType.from_name("int16").without_no_data().name == "int16raw"
    assert CellType.from_name("float32ud-1").without_no_data().no_data is None
    assert CellType.from_name("bool").without_no_data().name == "bool"
