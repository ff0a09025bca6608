"""
Unit tests for configuration validation
"""

import pytest

from utils.config_validator import (
    ConfigValidationError, validate_slab_rows, validate_business_config,
    check_production_readiness, require_valid_config,
)


@pytest.mark.unit
class TestSlabRowValidation:

    def test_valid_rows(self):
        rows = [{'min_trips': 0, 'max_trips': 9, 'amount': 800},
                {'min_trips': 10, 'max_trips': None, 'amount': 550}]
        assert validate_slab_rows(rows) == (True, [])

    @pytest.mark.parametrize("rows", [None, [], {'min_trips': 0}, "0-4:795"])
    def test_rejects_non_lists(self, rows):
        is_valid, issues = validate_slab_rows(rows)
        assert is_valid is False
        assert issues

    def test_reports_each_bad_row(self):
        rows = [{'min_trips': 5, 'max_trips': 2, 'amount': 700},
                {'min_trips': 0, 'amount': -10},
                {'amount': 500}]
        is_valid, issues = validate_slab_rows(rows)
        assert is_valid is False
        assert any('below min_trips' in issue for issue in issues)
        assert any('must not be negative' in issue for issue in issues)
        assert any("missing 'min_trips'" in issue for issue in issues)

    @pytest.mark.parametrize("max_trips", ['ten', 'abc', [9]])
    def test_non_numeric_max_trips_is_an_issue(self, max_trips):
        is_valid, issues = validate_slab_rows([{'min_trips': 0, 'max_trips': max_trips, 'amount': 500}])
        assert is_valid is False
        assert issues == ["Slab 0: min_trips, max_trips and amount must be numeric"]

    def test_numeric_strings_are_accepted(self):
        rows = [{'min_trips': '0', 'max_trips': '9', 'amount': '800'},
                {'min_trips': '10', 'amount': '600'}]
        assert validate_slab_rows(rows) == (True, [])

    def test_rent_rising_with_trips_is_refused(self):
        rows = [{'min_trips': 10, 'max_trips': None, 'amount': 900},
                {'min_trips': 0, 'max_trips': 9, 'amount': 500}]
        is_valid, issues = validate_slab_rows(rows)
        assert is_valid is False
        assert issues == ["Slab 0: amount 900 at 10+ trips is higher than 500 below it"]

    def test_rising_amounts_allowed_for_earnings_tables(self):
        rows = [{'min_trips': 0, 'max_trips': 9, 'amount': 100},
                {'min_trips': 10, 'max_trips': None, 'amount': 250}]
        assert validate_slab_rows(rows, non_increasing=False) == (True, [])

    @pytest.mark.parametrize("rows", [
        [{'min_trips': 0, 'max_trips': 10, 'amount': 800}, {'min_trips': 10, 'amount': 600}],
        [{'min_trips': 0, 'amount': 800}, {'min_trips': 5, 'max_trips': 9, 'amount': 600}],
    ])
    def test_overlapping_ranges_are_refused(self, rows):
        is_valid, issues = validate_slab_rows(rows, non_increasing=False)
        assert is_valid is False
        assert any('overlaps' in issue for issue in issues)

    def test_default_rent_tables_pass(self):
        from services.settlement_service import DEFAULT_RENT_SLABS, DEFAULT_RENT_SLABS_24HR
        for table in (DEFAULT_RENT_SLABS, DEFAULT_RENT_SLABS_24HR):
            rows = [{'min_trips': lo, 'max_trips': hi, 'amount': amount} for lo, hi, amount in table]
            assert validate_slab_rows(rows) == (True, [])


@pytest.mark.unit
class TestEnvironmentValidation:

    def test_non_numeric_setting_is_fatal(self, monkeypatch):
        monkeypatch.setenv('REFUND_THRESHOLD', 'lots')
        with pytest.raises(ConfigValidationError):
            require_valid_config()

    def test_negative_window_is_reported(self, monkeypatch):
        monkeypatch.setenv('OVERDUE_WINDOW_DAYS', '-5')
        is_valid, issues = validate_business_config()
        assert is_valid is False
        assert 'OVERDUE_WINDOW_DAYS must be positive' in issues

    def test_sqlite_fallback_is_only_a_warning(self, monkeypatch):
        monkeypatch.delenv('DATABASE_URL', raising=False)
        require_valid_config()
        result = check_production_readiness()
        assert result['production_ready'] is False
        assert any('DATABASE_URL' in issue for issue in result['issues'])
