"""
Tests for delimited file ingestion end to end (parse -> normalize -> dedup -> upsert -> log).
"""
from datetime import date

import pytest

from storesync.exceptions import ValidationError
from storesync.models import AdPerformance, DailyAnalytics, Product
from storesync.models.sync_log import SyncLogEntry
from storesync.services.ingest_service import decode_upload, ingest_delimited_file
from storesync.services.upsert_store import UpsertStore


def _facebook_line(day, spend, campaign="Spring"):
    cols = [""] * 23
    cols[0] = campaign
    cols[1] = day
    cols[2] = "Adset"
    cols[3] = "Ad"
    cols[13] = spend
    return ",".join(cols)


FACEBOOK_HEADER = ",".join(f"c{i}" for i in range(23))


class TestIngestFacebook:
    """Duplicate keys inside one file collapse to the last row."""

    def test_last_duplicate_wins(self, db):
        text = "\n".join([FACEBOOK_HEADER, _facebook_line("2025-01-01", "10.00"), _facebook_line("2025-01-01", "15.00")])
        summary = ingest_delimited_file("org1", "facebook", text, db=db)

        assert summary["rowsParsed"] == 2
        assert summary["duplicatesRemoved"] == 1
        assert summary["rowsWritten"] == 1
        rows = db.query(AdPerformance).all()
        assert len(rows) == 1
        assert float(rows[0].spend) == 15.0
        assert rows[0].date == date(2025, 1, 1)

    def test_reupload_is_skipped(self, db):
        text = "\n".join([FACEBOOK_HEADER, _facebook_line("2025-01-01", "10.00")])
        ingest_delimited_file("org1", "facebook", text, db=db)
        summary = ingest_delimited_file("org1", "facebook", text, db=db)
        assert summary["skipped"] == 1
        assert summary["rowsWritten"] == 0

    def test_bad_rows_are_sampled_not_fatal(self, db):
        text = "\n".join([FACEBOOK_HEADER, _facebook_line("2025-01-01", "10"), _facebook_line("bad", "5")])
        summary = ingest_delimited_file("org1", "facebook", text, db=db)
        assert summary["rowsFailed"] == 1
        assert summary["sampleErrors"][0]["row"] == 3

    def test_negative_spend_row_is_rejected(self, db):
        text = "\n".join([FACEBOOK_HEADER, _facebook_line("2025-01-01", "-10", campaign="Refund"), _facebook_line("2025-01-01", "10")])
        summary = ingest_delimited_file("org1", "facebook", text, db=db)

        assert summary["rowsParsed"] == 1
        assert summary["rowsFailed"] == 1
        assert summary["sampleErrors"] == [{"row": 2, "error": "Negative spend"}]
        assert [r.campaign for r in db.query(AdPerformance).all()] == ["Spring"]

    def test_writes_upload_log_entry(self, db):
        text = "\n".join([FACEBOOK_HEADER, _facebook_line("2025-01-01", "10")])
        ingest_delimited_file("org1", "facebook", text, db=db)
        entry = db.query(SyncLogEntry).one()
        assert entry.source == "facebook-upload"
        assert entry.status == "success"
        assert entry.org_id == "org1"


class TestIngestOtherFormats:
    """PostHog and product catalog uploads."""

    def test_posthog_upload(self, db):
        text = "date,unique_visitors,total_sessions\n2025-01-01,100,120\n2025-01-02,90,95\n"
        summary = ingest_delimited_file("org1", "posthog", text, db=db)
        assert summary["inserted"] == 2
        assert db.query(DailyAnalytics).count() == 2

    def test_product_upload_with_deactivation(self, db):
        header = ",".join(f"c{i}" for i in range(30))
        first = "\n".join([header, "S1,One" + "," * 28, "S2,Two" + "," * 28])
        ingest_delimited_file("org1", "products", first, db=db)

        second = "\n".join([header, "S1,One renamed" + "," * 28])
        summary = ingest_delimited_file("org1", "products", second, deactivate_missing=True, db=db)
        assert summary["deactivated"] == 1

        products = {p.sku: (p.product_name, p.active) for p in db.query(Product).all()}
        assert products == {"S1": ("One renamed", True), "S2": ("Two", False)}


class TestIngestRejections:
    """File-level problems raise; only an error log entry is written."""

    def test_missing_org(self, db):
        with pytest.raises(ValidationError):
            ingest_delimited_file("", "facebook", "a\n1", db=db)

    def test_header_only_is_logged_as_error(self, db):
        with pytest.raises(ValidationError):
            ingest_delimited_file("org1", "posthog", "date,unique_visitors\n", db=db)
        entry = db.query(SyncLogEntry).one()
        assert entry.source == "posthog-upload"
        assert entry.status == "error"
        assert entry.org_id == "org1"
        assert entry.details["rowsWritten"] == 0
        assert db.query(DailyAnalytics).count() == 0

    def test_missing_header_column_is_logged_as_error(self, db):
        with pytest.raises(ValidationError):
            ingest_delimited_file("org1", "posthog", "unique_visitors\n10\n", db=db)
        assert db.query(SyncLogEntry).one().status == "error"

    def test_store_failure_is_logged_and_raised(self, db, monkeypatch):
        def broken(self, org_id, rows, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(UpsertStore, "upsert", broken)
        with pytest.raises(RuntimeError):
            ingest_delimited_file("org1", "posthog", "date,unique_visitors\n2025-01-01,5\n", db=db)
        entry = db.query(SyncLogEntry).one()
        assert entry.status == "error"
        assert entry.details["error"] == "RuntimeError: disk full"

    def test_unknown_format_is_not_logged(self, db):
        with pytest.raises(ValidationError):
            ingest_delimited_file("org1", "tiktok", "a\n1", db=db)
        assert db.query(SyncLogEntry).count() == 0


class TestDecodeUpload:

    def test_utf8_and_latin1(self):
        assert decode_upload("£5".encode("utf-8")) == "£5"
        assert decode_upload("£5".encode("latin-1")) == "£5"
