"""
Unit tests for slab resolution and the settlement calculator
"""

import pytest

from models import Shift
from services.settlement_service import (
    SlabTable, SlabResolver, Settlement, SettlementDirection,
    DEFAULT_RENT_SLABS, DEFAULT_RENT_SLABS_24HR, compute_settlement, resolve_rent,
)


@pytest.mark.unit
class TestSlabTable:

    @pytest.mark.parametrize("trips,expected", [
        (0, 795.0), (4, 795.0), (5, 745.0), (7, 745.0), (8, 715.0),
        (9, 715.0), (10, 635.0), (11, 585.0), (12, 535.0), (40, 535.0),
    ])
    def test_default_rent_slabs(self, trips, expected):
        assert SlabResolver().resolve_rent(trips, Shift.MORNING) == expected

    @pytest.mark.parametrize("trips,expected", [
        (0, 1530.0), (10, 1530.0), (11, 1390.0), (16, 1330.0), (20, 1170.0), (22, 970.0), (30, 970.0),
    ])
    def test_full_day_slabs(self, trips, expected):
        assert SlabResolver().resolve_rent(trips, Shift.FULL_DAY) == expected

    def test_shift_accepts_plain_strings(self):
        resolver = SlabResolver()
        assert resolver.resolve_rent(12, '24hr') == 1390.0
        assert resolver.resolve_rent(12, 'night') == 535.0

    def test_rent_never_increases_with_more_trips(self):
        resolver = SlabResolver()
        for shift in (Shift.MORNING, Shift.NIGHT, Shift.FULL_DAY):
            rents = [resolver.resolve_rent(trips, shift) for trips in range(0, 40)]
            assert all(later <= earlier for earlier, later in zip(rents, rents[1:]))

    def test_negative_trips_fall_back_to_highest_rent(self):
        table = SlabTable(DEFAULT_RENT_SLABS)
        assert table.lookup(-3) == 795.0

    def test_gap_in_table_falls_back_to_ceiling(self):
        table = SlabTable([(0, 4, 800.0), (10, None, 500.0)])
        assert table.lookup(7) == 800.0
        assert table.lookup(12) == 500.0

    def test_config_round_trip_keeps_rows(self):
        table = SlabTable(DEFAULT_RENT_SLABS_24HR)
        rebuilt = SlabTable.from_config(table.to_config())
        assert rebuilt.rows == table.rows
        assert len(rebuilt) == 5

    def test_company_earnings_zero_without_table(self):
        assert SlabResolver().resolve_company_earnings(12) == 0.0

    def test_company_earnings_from_table(self):
        resolver = SlabResolver(earnings=SlabTable([(0, 9, 100.0), (10, None, 250.0)]))
        assert resolver.resolve_company_earnings(11) == 250.0
        assert resolver.resolve_company_earnings(3) == 100.0


@pytest.mark.unit
class TestComputeSettlement:

    def test_company_owes_driver_example(self):
        settlement = compute_settlement(total_trips=12, total_earnings=3000, toll=50,
                                        total_cashcollect=1000, other_fee=0,
                                        deposit_cutting_amount=0, shift=Shift.MORNING,
                                        resolver=SlabResolver())
        assert settlement.rent == 535.0
        assert settlement.due == 1515.0
        assert settlement.direction == SettlementDirection.COMPANY_OWES_DRIVER
        assert settlement.amount == 1515.0
        assert settlement.to_signed() == -1515.0

    def test_driver_owes_company(self):
        settlement = compute_settlement(total_trips=4, total_earnings=1000, total_cashcollect=900,
                                        other_fee=50, shift=Shift.MORNING, resolver=SlabResolver())
        # 1000 - 900 - 795 - 50
        assert settlement.due == -745.0
        assert settlement.direction == SettlementDirection.DRIVER_OWES_COMPANY
        assert settlement.to_signed() == 745.0

    def test_exactly_settled(self):
        settlement = compute_settlement(total_trips=12, total_earnings=535, shift=Shift.NIGHT,
                                        resolver=SlabResolver())
        assert settlement.direction == SettlementDirection.SETTLED
        assert settlement.to_signed() == 0.0

    def test_missing_inputs_count_as_zero(self):
        settlement = compute_settlement(total_trips=None, total_earnings=None, toll='',
                                        total_cashcollect=None, shift=Shift.MORNING,
                                        resolver=SlabResolver())
        assert settlement.rent == 795.0
        assert settlement.due == -795.0

    def test_vehicle_rent_overrides_slab(self):
        settlement = compute_settlement(total_trips=12, total_earnings=2000, rent=600,
                                        resolver=SlabResolver())
        assert settlement.rent == 600.0
        assert settlement.due == 1400.0

    def test_deposit_cutting_reduces_payout(self):
        without = compute_settlement(total_trips=12, total_earnings=3000, resolver=SlabResolver())
        with_deposit = compute_settlement(total_trips=12, total_earnings=3000,
                                          deposit_cutting_amount=500, resolver=SlabResolver())
        assert without.due - with_deposit.due == 500.0

    def test_same_inputs_give_same_signed_amount(self):
        inputs = dict(total_trips=9, total_earnings=2210.5, toll=35, total_cashcollect=640.25,
                      other_fee=20, deposit_cutting_amount=100, shift=Shift.NIGHT)
        first = compute_settlement(resolver=SlabResolver(), **inputs)
        second = compute_settlement(resolver=SlabResolver(), **inputs)
        assert first == second
        assert Settlement.direction_of(first.to_signed()) == first.direction

    def test_to_dict_carries_signed_amount(self):
        data = compute_settlement(total_trips=12, total_earnings=3000, toll=50,
                                  total_cashcollect=1000, resolver=SlabResolver()).to_dict()
        assert data['direction'] == 'company_owes_driver'
        assert data['rent_paid_amount'] == -1515.0


@pytest.mark.unit
def test_resolve_rent_outside_app_uses_builtin_tables():
    assert resolve_rent(12, Shift.MORNING) == 535.0
