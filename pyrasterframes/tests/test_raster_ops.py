import numpy as np
import pytest

from raster import ops
from raster.celltype import CellType
from raster.tile import Tile

ND = -32768


def _int16(rows):
    return Tile(np.array(rows, dtype=np.int16), CellType.from_name("int16"))


def test_mask_sets_no_data_where_mask_is_no_data():
    target = _int16([[1, 2], [3, 4]])
    mask = _int16([[0, ND], [ND, 0]])
    assert ops.mask(target, mask).cells.tolist() == [[1, ND], [ND, 4]]


def test_inverse_mask_sets_no_data_where_mask_has_data():
    target = _int16([[1, 2], [3, 4]])
    mask = _int16([[0, ND], [ND, 0]])
    assert ops.inverse_mask(target, mask).cells.tolist() == [[ND, 2], [3, ND]]


def test_mask_by_value_and_inverse():
    target = _int16([[1, 2], [3, 4]])
    mask = _int16([[5, 6], [5, ND]])
    assert ops.mask_by_value(target, mask, 5).cells.tolist() == [[ND, 2], [ND, 4]]
    assert ops.inverse_mask_by_value(target, mask, 5).cells.tolist() == [[1, ND], [3, ND]]


def test_mask_by_values():
    target = _int16([[1, 2, 3]])
    mask = _int16([[7, 8, 9]])
    assert ops.mask_by_values(target, mask, [7, 9]).cells.tolist() == [[ND, 2, ND]]


def test_masking_requires_no_data_on_target():
    target = Tile(np.array([[1, 2]], dtype=np.int16), CellType.from_name("int16raw"))
    with pytest.raises(ValueError):
        ops.mask(target, _int16([[ND, 0]]))


def test_masking_requires_equal_dimensions():
    with pytest.raises(ValueError):
        ops.mask(_int16([[1, 2]]), _int16([[1], [2]]))


def test_extract_bits():
    # 0b1101_0110 = 214
    t = Tile(np.array([[214, 0]], dtype=np.uint16), CellType.from_name("uint16raw"))
    assert ops.extract_bits(t, 1, 2).cells.tolist() == [[3, 0]]
    assert ops.extract_bits(t, 4, 4).cells.tolist() == [[13, 0]]


def test_extract_bits_keeps_no_data():
    t = _int16([[7, ND]])
    assert ops.extract_bits(t, 0, 1).cells.tolist() == [[1, ND]]


def test_extract_bits_rejects_floating_point():
    t = Tile(np.zeros((1, 1), dtype=np.float32), CellType.from_name("float32"))
    with pytest.raises(ValueError):
        ops.extract_bits(t, 0, 1)


def test_convert_cell_type_by_name():
    out = ops.convert_cell_type(_int16([[1, ND]]), "float32")
    assert out.cell_type.name == "float32"
    assert out.cells[0, 0] == 1.0
    assert np.isnan(out.cells[0, 1])


def test_local_arithmetic_keeps_cell_type_and_no_data():
    out = ops.local_scalar("add", _int16([[1, ND]]), 2.0)
    assert out.cell_type.name == "int16"
    assert out.cells.tolist() == [[3, ND]]
    halved = ops.local_scalar("divide", _int16([[5, 0]]), 2.0)
    assert halved.cells.tolist() == [[2, 0]]


def test_local_comparison_yields_bool_tile():
    out = ops.local_scalar("greater", _int16([[1, 5, ND]]), 2.0)
    assert out.cell_type.name == "bool"
    assert out.cells.tolist() == [[False, True, False]]


def test_unknown_local_operation():
    with pytest.raises(ValueError):
        ops.local_scalar("power", _int16([[1]]), 2.0)
