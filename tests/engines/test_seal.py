"""
Tests for the integrity seal.

Verifies:
- Determinism and line-order independence
- Decimal normalization (12.5 and 12.50 seal identically)
- Any change to a sealed field changes the seal
- verify_seal never accepts a missing seal
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from cost_engines.seal import SEALED_LINE_FIELDS, seal, seal_payload, verify_seal
from cost_kernel.domain.dtos import CertificationLine

IDENTITY = {"project_id": "p-1", "number": 3, "period_year": 2024, "period_month": 2}


def _line(node_id=None, total_amount=Decimal("500")):
    return CertificationLine(
        id=uuid4(),
        certification_id=uuid4(),
        wbs_node_id=node_id or uuid4(),
        budget_line_id=uuid4(),
        contractual_qty_snapshot=Decimal("100"),
        unit_price_snapshot=Decimal("10"),
        prev_progress_pct=Decimal("30"),
        period_progress_pct=Decimal("20"),
        total_progress_pct=Decimal("50"),
        prev_qty=Decimal("30"),
        period_qty=Decimal("20"),
        total_qty=Decimal("50"),
        remaining_qty=Decimal("50"),
        prev_amount=Decimal("300"),
        period_amount=Decimal("200"),
        total_amount=total_amount,
    )


class TestSeal:
    def test_sha256_hex(self):
        digest = seal(IDENTITY, [_line()])
        assert len(digest) == 64
        int(digest, 16)

    def test_deterministic(self):
        lines = [_line(), _line()]
        assert seal(IDENTITY, lines) == seal(IDENTITY, lines)

    def test_line_order_independent(self):
        a, b = _line(), _line()
        assert seal(IDENTITY, [a, b]) == seal(IDENTITY, [b, a])

    def test_decimal_normalized(self):
        line = _line()
        padded = replace(line, total_amount=Decimal("500.000"))
        assert seal(IDENTITY, [line]) == seal(IDENTITY, [padded])

    def test_line_ids_do_not_take_part(self):
        line = _line()
        assert seal(IDENTITY, [line]) == seal(IDENTITY, [replace(line, id=uuid4())])

    @pytest.mark.parametrize("field", [f for f in SEALED_LINE_FIELDS if f != "wbs_node_id"])
    def test_every_sealed_field_changes_seal(self, field):
        line = _line()
        tampered = replace(line, **{field: getattr(line, field) + 1})
        assert seal(IDENTITY, [line]) != seal(IDENTITY, [tampered])

    def test_identity_changes_seal(self):
        line = _line()
        assert seal(IDENTITY, [line]) != seal({**IDENTITY, "number": 4}, [line])

    def test_payload_structure(self):
        payload = seal_payload(IDENTITY, [_line()])
        assert set(payload) == {"identity", "lines"}
        assert set(payload["lines"][0]) == set(SEALED_LINE_FIELDS)

    def test_other_algorithm(self):
        digest = seal(IDENTITY, [_line()], algorithm="sha512")
        assert len(digest) == 128


class TestVerifySeal:
    def test_round_trip(self):
        lines = [_line()]
        assert verify_seal(IDENTITY, lines, seal(IDENTITY, lines))

    def test_tamper_detected(self):
        line = _line()
        stored = seal(IDENTITY, [line])
        assert not verify_seal(IDENTITY, [replace(line, total_amount=Decimal("501"))], stored)

    @pytest.mark.parametrize("stored", [None, ""])
    def test_missing_seal_never_matches(self, stored):
        assert not verify_seal(IDENTITY, [_line()], stored)
