"""
Tests for the budget costing calculator.

Verifies:
- Direct, indirect and total cost are exact
- Version totals sum exactly (no float drift over many lines)
- Unit price analysis and the markup cascade
- Float inputs are rejected
"""

from decimal import Decimal

import pytest

from cost_engines.costing import (
    ApuResource,
    line_total,
    line_totals,
    markup_cascade,
    sale_unit_price,
    unit_price_analysis,
    version_total,
)


class TestLineCosts:
    def test_line_total_is_exact_product(self):
        assert line_total(Decimal("3"), Decimal("0.1")) == Decimal("0.3")

    def test_line_totals(self):
        cost = line_totals(Decimal("100"), Decimal("10"), Decimal("15"))
        assert cost.direct == Decimal("1000")
        assert cost.indirect == Decimal("150")
        assert cost.total == Decimal("1150")

    def test_zero_indirect(self):
        cost = line_totals(Decimal("2.5"), Decimal("4"), Decimal("0"))
        assert cost.indirect == 0
        assert cost.total == Decimal("10")

    def test_indirect_range_not_enforced(self):
        cost = line_totals(Decimal("1"), Decimal("100"), Decimal("250"))
        assert cost.total == Decimal("350")

    def test_sale_unit_price(self):
        assert sale_unit_price(Decimal("10"), Decimal("15")) == Decimal("11.5")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            line_totals(100.0, Decimal("10"), Decimal("0"))
        with pytest.raises(TypeError):
            line_total(Decimal("1"), 0.1)


class TestVersionTotal:
    def test_empty_version(self):
        assert version_total([]) == Decimal("0")

    def test_many_small_amounts_sum_exactly(self):
        assert version_total([Decimal("0.1")] * 1000) == Decimal("100.0")

    def test_accepts_generators(self):
        assert version_total(Decimal(n) for n in range(5)) == Decimal("10")


class TestUnitPriceAnalysis:
    def test_resource_breakdown(self):
        resources = [
            ApuResource("CEM", "Cement", "kg", Decimal("0.12"), Decimal("350")),
            ApuResource("LAB", "Labourer", "h", Decimal("18.50"), Decimal("2")),
        ]
        result = unit_price_analysis(resources, Decimal("10"))
        assert [line.subtotal for line in result.lines] == [Decimal("42.00"), Decimal("37.00")]
        assert result.direct_cost == Decimal("79.00")
        assert result.indirect_cost == Decimal("7.9")
        assert result.unit_price == Decimal("86.9")

    def test_no_resources(self):
        result = unit_price_analysis([])
        assert result.unit_price == 0
        assert result.lines == ()


class TestMarkupCascade:
    def test_each_markup_applies_on_previous_subtotal(self):
        result = markup_cascade(
            Decimal("1000"),
            overhead_pct=Decimal("10"),
            financial_pct=Decimal("5"),
            profit_pct=Decimal("10"),
            tax_pct=Decimal("21"),
        )
        assert result.subtotal_1 == Decimal("1100")
        assert result.financial == Decimal("55")
        assert result.subtotal_2 == Decimal("1155")
        assert result.profit == Decimal("115.5")
        assert result.subtotal_3 == Decimal("1270.5")
        assert result.tax == Decimal("266.805")
        assert result.total == Decimal("1537.305")

    def test_default_tax_only(self):
        result = markup_cascade(Decimal("100"))
        assert result.total == Decimal("121")
