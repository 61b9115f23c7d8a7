"""
Tests for the reconciliation engine components.
Covers decimal helpers, the OCR schema, master data cache, tax computation,
HSN matching, aggregation, the diff engine, the validation gate and the
update payload builder.
"""

import sys
import threading
import time
import unittest
from decimal import Decimal
from pathlib import Path

# Ensure the project root and this directory are on sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(Path(__file__).parent))

import recon_fixtures as fx  # noqa: E402

from invoice_recon.aggregator import aggregate  # noqa: E402
from invoice_recon.amounts import (  # noqa: E402
    format_amount,
    format_quantity,
    parse_decimal,
    round_amount,
    safe_decimal,
    tidy_number,
)
from invoice_recon.diff_engine import (  # noqa: E402
    DiffEngine,
    ObservedSnapshot,
    normalize_date,
    normalize_description,
)
from invoice_recon.hsn_matcher import HsnMatcher  # noqa: E402
from invoice_recon.master_data_cache import MasterDataCache  # noqa: E402
from invoice_recon.models import (  # noqa: E402
    InvoiceHeader,
    LineItem,
    TaxCode,
    TdsCode,
    ValidationResult,
)
from invoice_recon.ocr_schema import OcrPayload  # noqa: E402
from invoice_recon.payload_builder import (  # noqa: E402
    build_line_item,
    build_update_payload,
)
from invoice_recon.repositories import (  # noqa: E402
    MemoryRecordRepository,
    RepositoryError,
    invoice_from_record,
)
from invoice_recon.tax_calculation import TaxCalculation  # noqa: E402
from invoice_recon.validation_gate import ValidationGate  # noqa: E402


def valid_header(**changes):
    header = InvoiceHeader(
        invoice_number="INV-2026-001",
        invoice_date="2026-02-14",
        gst_number=fx.GSTIN,
        vendor_id="V-100",
        vendor_name="Acme Traders",
        vendor_pan="AABCU9603R",
        vendor_email="billing@acme.example",
        billing_address="12 MG Road, Bengaluru",
        shipping_address="Warehouse 4, Hosur Road, Bengaluru",
    )
    return header.copy(**changes)


def valid_row(row_id=1, **changes):
    row = LineItem(
        row_id=row_id,
        description="Basmati Rice",
        quantity="2",
        rate="100",
        hsn_code="1006",
        tax_code="GST18",
        tds_code="TDS2",
        tds_amount="4.00",
        igst="0.00",
        cgst="18.00",
        sgst="18.00",
        utgst="0.00",
        net_amount="200.00",
    )
    return row.copy(**changes)


# ======================================================================
# Test: Decimal helpers
# ======================================================================


class TestAmounts(unittest.TestCase):
    """Test parsing and formatting of money and quantities."""

    def test_parse_decimal_accepts_formatted_strings(self):
        self.assertEqual(parse_decimal("1,234.50"), Decimal("1234.50"))
        self.assertEqual(parse_decimal("₹ 10"), Decimal("10"))
        self.assertEqual(parse_decimal(" 7 "), Decimal("7"))
        self.assertEqual(parse_decimal(3), Decimal("3"))
        self.assertEqual(parse_decimal(2.5), Decimal("2.5"))

    def test_parse_decimal_rejects_garbage(self):
        self.assertIsNone(parse_decimal(None))
        self.assertIsNone(parse_decimal(""))
        self.assertIsNone(parse_decimal("abc"))
        self.assertIsNone(parse_decimal(True))
        self.assertIsNone(parse_decimal("NaN"))
        self.assertIsNone(parse_decimal(float("inf")))

    def test_safe_decimal_defaults_to_zero(self):
        self.assertEqual(safe_decimal("n/a"), Decimal("0"))
        self.assertEqual(safe_decimal("12.5"), Decimal("12.5"))

    def test_format_amount_rounds_half_up(self):
        self.assertEqual(format_amount(Decimal("2.345")), "2.35")
        self.assertEqual(format_amount(Decimal("2.344")), "2.34")
        self.assertEqual(format_amount(Decimal("18")), "18.00")

    def test_format_quantity(self):
        self.assertEqual(format_quantity(Decimal("2")), "2.0000")
        self.assertEqual(format_quantity(Decimal("1.23456")), "1.2346")

    def test_tidy_number(self):
        self.assertEqual(tidy_number("2.0000"), "2")
        self.assertEqual(tidy_number("2.50"), "2.5")
        self.assertEqual(tidy_number("100"), "100")
        self.assertEqual(tidy_number(" abc "), "abc")
        self.assertEqual(tidy_number(None), "")

    def test_huge_values_do_not_raise(self):
        self.assertIsNone(parse_decimal("1e30"))
        self.assertIsNone(parse_decimal(Decimal("-1e15")))
        self.assertEqual(parse_decimal("999999999999999"), Decimal("999999999999999"))
        self.assertEqual(tidy_number("1e30"), "1e30")
        self.assertEqual(round_amount(Decimal("1e40")), Decimal("1e40"))
        self.assertEqual(
            format_amount(Decimal("123456789012345678901234567890.125")),
            "123456789012345678901234567890.13",
        )
        self.assertEqual(
            format_quantity(Decimal("123456789012345678901234567890")),
            "123456789012345678901234567890.0000",
        )


# ======================================================================
# Test: OCR schema
# ======================================================================


class TestOcrSchema(unittest.TestCase):
    """Test validation of untrusted OCR payloads."""

    def test_line_items_alias_and_coercion(self):
        payload = OcrPayload.model_validate({
            "invoice_number": 12345,
            "invoice_lineitems": [
                {"line_num": "2", "quantity": "abc", "unit_price": 100, "hsn_sac": 1006},
                "junk",
            ],
        })
        self.assertEqual(payload.invoice_number, "12345")
        self.assertEqual(len(payload.line_items), 1)
        line = payload.line_items[0]
        self.assertEqual(line.line_num, 2)
        self.assertIsNone(line.quantity)
        self.assertEqual(line.unit_price, Decimal("100"))
        self.assertEqual(line.hsn_sac, "1006")

    def test_non_list_line_items_become_empty(self):
        payload = OcrPayload.model_validate({"line_items": "oops"})
        self.assertEqual(payload.line_items, [])

    def test_get_and_line_at(self):
        payload = OcrPayload.model_validate({
            "vendor_name": "Acme",
            "line_items": [{"description": "Rice"}],
        })
        self.assertEqual(payload.get("vendor_name"), "Acme")
        self.assertIsNone(payload.get("vendor_id"))
        self.assertIsNone(payload.get("no_such_field"))
        self.assertIsNone(payload.get("line_items"))
        self.assertEqual(payload.line_at(0).description, "Rice")
        self.assertIsNone(payload.line_at(1))
        self.assertIsNone(payload.line_at(-1))


# ======================================================================
# Test: Master Data Cache
# ======================================================================


class TestMasterDataCache(unittest.TestCase):
    """Test loading and indexing of the reference tables."""

    def setUp(self):
        self.items = MemoryRecordRepository(fx.ITEM_RECORDS)
        self.taxes = MemoryRecordRepository(fx.TAX_RECORDS)
        self.tds = MemoryRecordRepository(fx.TDS_RECORDS)

    def test_lookups_after_load(self):
        cache = MasterDataCache(self.items, self.taxes, self.tds).load()
        self.assertTrue(cache.is_loaded)
        self.assertFalse(cache.is_degraded)
        self.assertEqual(cache.item_count, 2)
        self.assertEqual(cache.tax_count, 3)
        self.assertEqual(cache.tds_count, 2)
        self.assertEqual(cache.get_item_by_hsn(" 1006 ").tax_code, "GST18")
        self.assertEqual(cache.get_tax_by_code("GST18 ").cgst_percentage, "9")
        self.assertEqual(cache.get_tds_by_code("TDS10").percentage, "10")

    def test_missing_codes_return_none(self):
        cache = fx.master_data()
        self.assertIsNone(cache.get_item_by_hsn("9999"))
        self.assertIsNone(cache.get_item_by_hsn(""))
        self.assertIsNone(cache.get_tax_by_code("NOPE"))
        self.assertIsNone(cache.get_tds_by_code(None))

    def test_hsn_lookup_is_normalized(self):
        cache = MasterDataCache.from_records(
            [{"hsn_sac_code": " ab12 ", "description": "Widget"}], [], []
        )
        self.assertEqual(cache.get_item_by_hsn("AB12").description, "Widget")
        self.assertEqual(cache.get_item_by_hsn("ab12").description, "Widget")

    def test_single_bounded_fetch_per_table(self):
        cache = MasterDataCache(self.items, self.taxes, self.tds, page_size=500)
        cache.load()
        cache.load()
        self.assertEqual(self.items.calls, [{"limit": 500, "offset": 0}])
        self.assertEqual(self.taxes.calls, [{"limit": 500, "offset": 0}])
        self.assertEqual(self.tds.calls, [{"limit": 500, "offset": 0}])

    def test_failed_table_degrades_to_empty(self):
        broken = MemoryRecordRepository(error=RepositoryError("tax service down"))
        cache = MasterDataCache(self.items, broken, self.tds).load()
        self.assertTrue(cache.is_loaded)
        self.assertTrue(cache.is_degraded)
        self.assertIn("tax", cache.load_errors)
        self.assertEqual(cache.tax_count, 0)
        self.assertEqual(cache.item_count, 2)
        self.assertIsNone(cache.get_tax_by_code("GST18"))

    def test_first_record_wins_on_duplicates(self):
        cache = MasterDataCache.from_records(
            [],
            [{"tax_code": "GST18", "cgst_percentage": "9"},
             {"tax_code": "GST18", "cgst_percentage": "14"}],
            [],
        )
        self.assertEqual(cache.get_tax_by_code("GST18").cgst_percentage, "9")

    def test_concurrent_loads_fetch_once(self):
        class SlowRepository(MemoryRecordRepository):
            def list(self, limit, offset=0):
                time.sleep(0.05)
                return super().list(limit, offset)

        items = SlowRepository(fx.ITEM_RECORDS)
        cache = MasterDataCache(items, self.taxes, self.tds)
        workers = [threading.Thread(target=cache.load) for _ in range(3)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self.assertEqual(len(items.calls), 1)
        self.assertEqual(len(self.taxes.calls), 1)
        self.assertEqual(cache.item_count, 2)


# ======================================================================
# Test: Tax Computation Engine
# ======================================================================


class TestTaxCalculation(unittest.TestCase):
    """Test per-line tax computation."""

    def setUp(self):
        self.calc = TaxCalculation()
        self.master = fx.master_data()
        self.gst18 = self.master.get_tax_by_code("GST18")
        self.tds2 = self.master.get_tds_by_code("TDS2")

    def test_compute_intra_state(self):
        taxes = self.calc.compute("2", "100", self.gst18, self.tds2)
        self.assertEqual(taxes.cgst, "18.00")
        self.assertEqual(taxes.sgst, "18.00")
        self.assertEqual(taxes.igst, "0.00")
        self.assertEqual(taxes.utgst, "0.00")
        self.assertEqual(taxes.tds_amount, "4.00")

    def test_compute_without_codes_is_zero(self):
        taxes = self.calc.compute("2", "100", None, None)
        self.assertEqual(
            (taxes.cgst, taxes.sgst, taxes.igst, taxes.utgst, taxes.tds_amount),
            ("0.00", "0.00", "0.00", "0.00", "0.00"),
        )

    def test_non_numeric_inputs_compute_as_zero(self):
        taxes = self.calc.compute("abc", "100", self.gst18, self.tds2)
        self.assertEqual(taxes.cgst, "0.00")
        self.assertEqual(taxes.tds_amount, "0.00")

    def test_bad_percentages_default_to_zero(self):
        gst5 = self.master.get_tax_by_code("GST5")
        taxes = self.calc.compute("1", "50", gst5, None)
        self.assertEqual(taxes.cgst, "1.25")
        self.assertEqual(taxes.sgst, "1.25")
        self.assertEqual(taxes.igst, "0.00")
        self.assertEqual(taxes.utgst, "0.00")

    def test_component_rounds_half_up(self):
        self.assertEqual(self.calc.component(Decimal("0.1"), "5"), Decimal("0.01"))
        self.assertEqual(self.calc.component(Decimal("100"), ""), Decimal("0.00"))

    def test_compute_is_repeatable(self):
        first = self.calc.compute("3", "99.99", self.gst18, self.tds2)
        second = self.calc.compute("3", "99.99", self.gst18, self.tds2)
        self.assertEqual(first, second)

    def test_net_amount(self):
        self.assertEqual(self.calc.net_amount("2", "2.345"), "4.69")
        self.assertIsNone(self.calc.net_amount("abc", "1"))
        self.assertIsNone(self.calc.net_amount("2", ""))

    def test_quantity_change_recomputes_row(self):
        row = valid_row(quantity="3", rate="100")
        updated = self.calc.apply_to_row(row, self.master)
        self.assertEqual(updated.cgst, "27.00")
        self.assertEqual(updated.sgst, "27.00")
        self.assertEqual(updated.net_amount, "300.00")
        self.assertEqual(updated.tds_amount, "6.00")
        # The input row is left untouched
        self.assertEqual(row.cgst, "18.00")

    def test_blank_codes_keep_extracted_amounts(self):
        row = LineItem(row_id=1, quantity="1", rate="50", cgst="4.50", sgst="4.50")
        updated = self.calc.apply_to_row(row, self.master)
        self.assertEqual(updated.cgst, "4.50")
        self.assertEqual(updated.sgst, "4.50")
        self.assertEqual(updated.net_amount, "50.00")

    def test_clear_components(self):
        row = self.calc.apply_to_row(valid_row(tax_code="GST18"), self.master)
        self.assertEqual(row.cgst, "18.00")

        cleared = self.calc.clear_components(row.copy(tax_code=""), "tax_code")
        self.assertEqual(
            (cleared.cgst, cleared.sgst, cleared.igst, cleared.utgst),
            ("0.00", "0.00", "0.00", "0.00"),
        )
        self.assertEqual(cleared.tds_amount, "4.00")

        cleared = self.calc.clear_components(row.copy(tds_code=""), "tds_code")
        self.assertEqual(cleared.tds_amount, "0.00")
        self.assertEqual(cleared.cgst, "18.00")

        with self.assertRaises(ValueError):
            self.calc.clear_components(row, "quantity")

    def test_huge_quantity_computes_as_zero(self):
        row = LineItem(row_id=1, quantity="1e30", rate="1", tax_code="GST18")
        updated = self.calc.apply_to_row(row, self.master)
        self.assertEqual(updated.cgst, "0.00")
        self.assertEqual(updated.sgst, "0.00")
        self.assertEqual(updated.net_amount, "")

    def test_largest_accepted_values(self):
        row = valid_row(quantity="999999999999999", rate="999999999999999")
        updated = self.calc.apply_to_row(row, self.master)
        self.assertTrue(updated.net_amount.endswith(".00"))
        self.assertTrue(updated.cgst.endswith(".00"))

    def test_unknown_tax_code_computes_as_zero(self):
        row = valid_row(tax_code="NOPE")
        updated = self.calc.apply_to_row(row, self.master)
        self.assertEqual(updated.cgst, "0.00")
        self.assertEqual(updated.sgst, "0.00")
        self.assertEqual(updated.tds_amount, "4.00")

    def test_sum_amounts_ignores_garbage(self):
        self.assertEqual(
            self.calc.sum_amounts(["1.50", "", None, "abc", "2"]), Decimal("3.50")
        )


# ======================================================================
# Test: HSN Matcher
# ======================================================================


class TestHsnMatcher(unittest.TestCase):
    """Test HSN resolution and backfill."""

    def setUp(self):
        self.matcher = HsnMatcher()
        self.master = fx.master_data()
        self.invoice = invoice_from_record(fx.invoice_record())

    def test_backfills_from_ocr_hsn(self):
        result = self.matcher.match(
            self.invoice.line_items, self.invoice.ocr_payload, self.master
        )
        row = result.rows[0]
        self.assertEqual(row.hsn_code, "1006")
        self.assertEqual(row.description, "Basmati Rice")
        self.assertEqual(row.tax_code, "GST18")
        self.assertEqual(row.tds_code, "TDS2")
        self.assertEqual(row.cgst, "18.00")
        self.assertEqual(row.sgst, "18.00")
        self.assertEqual(row.igst, "0.00")
        self.assertEqual(row.tds_amount, "4.00")

    def test_unmatched_row_left_unchanged(self):
        result = self.matcher.match(
            self.invoice.line_items, self.invoice.ocr_payload, self.master
        )
        self.assertEqual(result.unmatched_hsn_rows, {2})
        self.assertEqual(result.rows[1], self.invoice.line_items[1])
        self.assertEqual(result.matched_count, 1)

    def test_unknown_hsn_without_payload(self):
        rows = [LineItem(row_id=7, description="Mystery", hsn_code="9999")]
        result = self.matcher.match(rows, OcrPayload(), self.master)
        self.assertEqual(result.unmatched_hsn_rows, {7})
        self.assertEqual(result.rows, rows)

    def test_no_key_is_unmatched(self):
        rows = [LineItem(row_id=1, description="Loose item")]
        result = self.matcher.match(rows, OcrPayload(), self.master)
        self.assertEqual(result.unmatched_hsn_rows, {1})

    def test_existing_hsn_overwrites_description_and_codes(self):
        rows = [LineItem(row_id=1, description="consulting", quantity="1",
                         rate="1000", hsn_code="998314", tax_code="GST18")]
        result = self.matcher.match(rows, OcrPayload(), self.master)
        row = result.rows[0]
        self.assertEqual(row.hsn_code, "998314")
        self.assertEqual(row.description, "IT Consulting Services")
        self.assertEqual(row.tax_code, "IGST18")
        self.assertEqual(row.igst, "180.00")
        self.assertEqual(row.cgst, "0.00")
        self.assertEqual(row.tds_amount, "100.00")

    def test_matching_is_idempotent(self):
        payload = self.invoice.ocr_payload
        first = self.matcher.match(self.invoice.line_items, payload, self.master)
        second = self.matcher.match(first.rows, payload, self.master)
        self.assertEqual(first.rows, second.rows)
        self.assertEqual(first.unmatched_hsn_rows, second.unmatched_hsn_rows)

    def test_matching_is_deterministic(self):
        payload = self.invoice.ocr_payload
        runs = [
            self.matcher.match(self.invoice.line_items, payload, self.master)
            for _ in range(3)
        ]
        self.assertEqual(runs[0], runs[1])
        self.assertEqual(runs[1], runs[2])


# ======================================================================
# Test: Aggregator
# ======================================================================


class TestAggregator(unittest.TestCase):
    """Test invoice-level totals."""

    def test_totals(self):
        rows = [
            valid_row(1),
            LineItem(row_id=2, net_amount="50.00", cgst="abc", igst="", utgst="3.00"),
        ]
        totals = aggregate(rows)
        self.assertEqual(totals.subtotal, "250.00")
        self.assertEqual(totals.cgst_total, "18.00")
        self.assertEqual(totals.sgst_total, "18.00")
        self.assertEqual(totals.igst_total, "0.00")
        self.assertEqual(totals.utgst_total, "3.00")
        self.assertEqual(totals.tds_total, "4.00")
        self.assertEqual(totals.total_amount, "286.00")
        self.assertEqual(totals.payable, "282.00")

    def test_empty_rows(self):
        totals = aggregate([])
        self.assertEqual(set(totals.to_dict().values()), {"0.00"})

    def test_identities_hold(self):
        rows = [
            valid_row(1, net_amount="10.333", cgst="0.935", sgst="0.935"),
            valid_row(2, net_amount="99.995", igst="17.999", tds_amount="2.005"),
            valid_row(3, net_amount="0.004", cgst="0.005"),
        ]
        totals = aggregate(rows)
        total = (Decimal(totals.subtotal) + Decimal(totals.cgst_total)
                 + Decimal(totals.sgst_total) + Decimal(totals.igst_total))
        self.assertEqual(Decimal(totals.total_amount), total)
        self.assertEqual(
            Decimal(totals.payable),
            Decimal(totals.total_amount) - Decimal(totals.tds_total),
        )

    def test_order_independent(self):
        rows = [valid_row(1), valid_row(2, net_amount="12.34", cgst="1.11")]
        self.assertEqual(aggregate(rows), aggregate(list(reversed(rows))))


# ======================================================================
# Test: Diff Engine
# ======================================================================


class TestDiffEngine(unittest.TestCase):
    """Test changed-since-extraction detection."""

    def setUp(self):
        self.engine = DiffEngine()
        self.payload = OcrPayload.model_validate({
            "invoice_date": "14/02/2026",
            "gst_number": fx.GSTIN,
            "vendor_name": "Acme Traders",
            "vendor_pan": "",
            "line_items": [
                {"description": "Freight", "igst_amount": 50, "hsn_sac": "9965"},
                {"description": "Packing  Charges", "unit_price": "12.50"},
            ],
        })

    def line_changed(self, row, field_name, index=0, snapshot=None):
        return self.engine.is_line_field_changed(
            row, index, field_name, self.payload, snapshot
        )

    def test_numeric_tolerance(self):
        row = LineItem(row_id=1, description="Freight")
        self.assertTrue(self.line_changed(row.copy(igst="55"), "igst"))
        self.assertFalse(self.line_changed(row.copy(igst="50.005"), "igst"))
        self.assertFalse(self.line_changed(row.copy(igst="50"), "igst"))
        self.assertTrue(self.line_changed(row.copy(igst="50.02"), "igst"))

    def test_unparseable_current_against_numeric_baseline(self):
        row = LineItem(row_id=1, description="Freight", igst="")
        self.assertTrue(self.line_changed(row, "igst"))

    def test_text_fields_compare_trimmed(self):
        row = LineItem(row_id=1, description="Freight", hsn_code=" 9965 ")
        self.assertFalse(self.line_changed(row, "hsn_code"))
        self.assertTrue(self.line_changed(row.copy(hsn_code="9966"), "hsn_code"))

    def test_description_match_beats_position(self):
        row = LineItem(row_id=1, description="packing charges", rate="12.5")
        self.assertFalse(self.line_changed(row, "rate", index=0))
        self.assertTrue(self.line_changed(row.copy(rate="13"), "rate", index=0))

    def test_positional_fallback(self):
        row = LineItem(row_id=1, description="Renamed", igst="50")
        self.assertFalse(self.line_changed(row, "igst", index=0))

    def test_date_formats_are_normalized(self):
        self.assertFalse(self.engine.is_header_field_changed(
            "invoice_date", "2026-02-14", self.payload))
        self.assertFalse(self.engine.is_header_field_changed(
            "invoice_date", "2026-02-14T10:30:00", self.payload))
        self.assertTrue(self.engine.is_header_field_changed(
            "invoice_date", "2026-02-15", self.payload))

    def test_vendor_id_falls_back_to_gst_number(self):
        self.assertFalse(self.engine.is_header_field_changed(
            "vendor_id", fx.GSTIN, self.payload))
        self.assertTrue(self.engine.is_header_field_changed(
            "vendor_id", "V-100", self.payload))

    def test_header_without_baseline_is_unchanged(self):
        self.assertFalse(self.engine.is_header_field_changed(
            "shipping_address", "Anywhere", self.payload))

    def test_both_empty_is_unchanged(self):
        self.assertFalse(self.engine.is_header_field_changed(
            "vendor_pan", "  ", self.payload))
        self.assertTrue(self.engine.is_header_field_changed(
            "vendor_pan", "AABCU9603R", self.payload))

    def test_snapshot_fallback(self):
        snapshot = ObservedSnapshot()
        row = LineItem(row_id=9, description="Unlisted", cgst="18.00", tax_code="GST18")
        self.assertTrue(snapshot.record(row))
        empty = OcrPayload()

        def changed(current, field_name):
            return self.engine.is_line_field_changed(current, 0, field_name, empty, snapshot)

        self.assertFalse(changed(row, "cgst"))
        self.assertFalse(changed(row.copy(cgst="18.004"), "cgst"))
        self.assertTrue(changed(row.copy(cgst="20.00"), "cgst"))
        self.assertTrue(changed(row.copy(tax_code="GST5"), "tax_code"))
        # No baseline anywhere
        self.assertFalse(changed(row.copy(sgst="3.00"), "sgst"))

    def test_snapshot_is_write_once(self):
        snapshot = ObservedSnapshot()
        snapshot.record(LineItem(row_id=1, cgst="1.00"))
        self.assertFalse(snapshot.record(LineItem(row_id=1, cgst="9.00")))
        self.assertEqual(snapshot.get(1, "cgst"), Decimal("1.00"))
        self.assertIn(1, snapshot)
        self.assertEqual(len(snapshot), 1)

    def test_diff_report_is_stable(self):
        header = InvoiceHeader(
            invoice_date="2026-02-14",
            gst_number=fx.GSTIN,
            vendor_id=fx.GSTIN,
            vendor_name="Acme Corp",
        )
        rows = [LineItem(row_id=1, description="Freight", hsn_code="9965", igst="55")]
        first = self.engine.diff(header, rows, self.payload)
        second = self.engine.diff(header, rows, self.payload)
        self.assertEqual(first, second)
        self.assertEqual(first.changed_header_fields(), ["vendor_name"])
        self.assertEqual(first.changed_row_fields(1), ["igst"])
        self.assertEqual(first.changed_row_fields(42), [])

    def test_normalizers(self):
        self.assertEqual(normalize_date("14/02/2026"), "2026-02-14")
        self.assertEqual(normalize_date("2026-02-14 08:00"), "2026-02-14")
        self.assertIsNone(normalize_date("Feb 14"))
        self.assertIsNone(normalize_date(""))
        self.assertEqual(normalize_description("  Packing\tCHARGES "), "packing charges")


# ======================================================================
# Test: Validation Gate
# ======================================================================


class TestValidationGate(unittest.TestCase):
    """Test pre-submission checks."""

    def setUp(self):
        self.gate = ValidationGate()

    def test_valid_invoice(self):
        result = self.gate.validate(valid_header(), [valid_row(1), valid_row(2)])
        self.assertTrue(result.valid)
        self.assertEqual(result.status, "OK")
        self.assertEqual(result.error_count, 0)

    def test_missing_gst_code_blocks_only_that_row(self):
        rows = [valid_row(1), valid_row(2, tax_code="")]
        result = self.gate.validate(valid_header(), rows)
        self.assertFalse(result.valid)
        self.assertEqual(result.row_errors, {2: {"tax_code": "GST code is required"}})
        self.assertNotIn(1, result.row_errors)

    def test_header_errors(self):
        header = valid_header(vendor_pan="", gst_number="29AABC")
        result = self.gate.validate(header, [valid_row()])
        self.assertEqual(result.header_errors["vendor_pan"], "Vendor PAN is required")
        self.assertIn("15", result.header_errors["gst_number"])
        self.assertEqual(result.row_errors, {})

    def test_at_least_one_row(self):
        result = self.gate.validate(valid_header(), [])
        self.assertIn("line_items", result.header_errors)

    def test_range_checks(self):
        row = valid_row(
            quantity="0", rate="abc", igst="-1", tds_amount="", net_amount="-5"
        )
        errors = self.gate.validate(valid_header(), [row]).row_errors[1]
        self.assertEqual(errors["quantity"], "Quantity must be greater than 0")
        self.assertEqual(errors["rate"], "Rate must be greater than 0")
        self.assertEqual(errors["igst"], "IGST cannot be negative")
        self.assertEqual(errors["tds_amount"], "TDS amount is required")
        self.assertEqual(errors["net_amount"], "Net amount must be greater than 0")

    def test_zero_tax_amounts_are_allowed(self):
        row = valid_row(cgst="0", sgst="0.00", tds_amount="0")
        self.assertTrue(self.gate.validate(valid_header(), [row]).valid)

    def test_validation_does_not_mutate(self):
        rows = [valid_row(1, description="")]
        header = valid_header(invoice_number="")
        self.gate.validate(header, rows)
        self.assertEqual(rows[0].description, "")
        self.assertEqual(header.invoice_number, "")

    def test_result_to_dict(self):
        result = ValidationResult()
        result.add_row_error(3, "rate", "Rate is required")
        d = result.to_dict()
        self.assertFalse(d["valid"])
        self.assertEqual(d["row_errors"], {"3": {"rate": "Rate is required"}})


# ======================================================================
# Test: Update payload
# ======================================================================


class TestPayloadBuilder(unittest.TestCase):
    """Test the update request body."""

    def test_line_item_wire_format(self):
        row = valid_row(
            description=" Rice ",
            tds_code="",
            tds_amount="",
            cgst="18",
            igst="",
            line_item_id="li-1",
        )
        item = build_line_item(row, 1)
        self.assertEqual(item["line_num"], 1)
        self.assertEqual(item["description"], "Rice")
        self.assertEqual(item["quantity"], "2.0000")
        self.assertEqual(item["rate"], "100.0000")
        self.assertEqual(item["hsn_sac"], "1006")
        self.assertEqual(item["cgst_amount"], "18.00")
        self.assertIsNone(item["igst_amount"])
        self.assertEqual(item["utgst_amount"], "0.00")
        self.assertEqual(item["discount"], "0.0000")
        self.assertEqual(item["tax_code"], "GST18")
        self.assertIsNone(item["tds_code"])
        self.assertIsNone(item["tds_amount"])
        self.assertEqual(item["subtotal"], "200.00")
        self.assertEqual(item["total"], "200.00")
        self.assertEqual(item["id"], "li-1")

    def test_total_falls_back_to_subtotal(self):
        item = build_line_item(valid_row(net_amount="", quantity="3", rate="1.5"), 2)
        self.assertEqual(item["subtotal"], "4.50")
        self.assertEqual(item["total"], "4.50")
        self.assertNotIn("id", item)

    def test_update_payload(self):
        header = valid_header(shipping_address="  ")
        payload = build_update_payload(header, [valid_row(1), valid_row(2)])
        self.assertEqual(payload["invoice_number"], "INV-2026-001")
        self.assertIsNone(payload["shipping_address"])
        self.assertEqual(payload["currency"], "INR")
        self.assertEqual(payload["subtotal_amount"], "400.00")
        self.assertEqual(payload["cgst_amount"], "36.00")
        self.assertEqual(payload["total_amount"], "472.00")
        self.assertEqual(payload["tds_amount"], "8.00")
        self.assertEqual(payload["payable_amount"], "464.00")
        self.assertEqual(
            [item["line_num"] for item in payload["invoice_lineitems"]], [1, 2]
        )


# ======================================================================
# Test: Reference data models
# ======================================================================


class TestReferenceModels(unittest.TestCase):
    """Test record conversion for master data."""

    def test_tax_code_from_record(self):
        tax = TaxCode.from_record({"tax_code": " GST18 ", "cgst_percentage": 9})
        self.assertEqual(tax.code, "GST18")
        self.assertEqual(tax.cgst_percentage, "9")
        self.assertEqual(tax.igst_percentage, "")

    def test_tds_code_from_record(self):
        tds = TdsCode.from_record({"tds_code": "TDS2", "tds_percentage": None})
        self.assertEqual(tds.code, "TDS2")
        self.assertEqual(tds.percentage, "")


if __name__ == "__main__":
    unittest.main()
