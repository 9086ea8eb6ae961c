import pytest

from nullivote import curve
from nullivote.dlog import DiscreteLogTable, shared_table
from nullivote.errors import DiscreteLogOutOfRange


def test_lookup_recovers_every_value_in_range():
    table = DiscreteLogTable.build(100)
    G = curve.base_point()
    assert len(table) == 101
    for k in range(101):
        assert table.lookup(curve.scalar_mul(k, G)) == k


def test_out_of_range_point():
    table = DiscreteLogTable.build(10)
    P = curve.scalar_mul(11, curve.base_point())
    assert table.lookup(P) is None
    assert P not in table
    with pytest.raises(DiscreteLogOutOfRange):
        table.resolve(P)
    assert table.resolve(curve.identity()) == 0


def test_shared_table_is_reused():
    assert shared_table(20) is shared_table(20)
    assert shared_table(20).max_value == 20


def test_negative_bound_rejected():
    with pytest.raises(ValueError):
        DiscreteLogTable.build(-1)
