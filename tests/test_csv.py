"""Tests for the CSV import / export service and its CLI commands."""

import csv
import io
from datetime import date

from crm.models.lead import Lead
from crm.models.prospect import Prospect
from crm.services import csv_service
from crm.services.csv_service import (
    avocado_consumption,
    locality_from_location,
    parse_lat_lng,
    parse_sheet_date,
    transform_lead_rows,
    transform_prospect_rows,
)

PROSPECT_SHEET = """Pincode,Restaurant Name,Location,Type,Source
560001,Leaf Cafe,"12 Church St, Ashok Nagar, Bangalore, Karnataka",Cafe,Zomato
560002,Bowl House,"Indiranagar, Bengaluru",QSR,Swiggy
,No Pincode Diner,"Somewhere",Cafe,Walk-in
560003,,"Nameless",Cafe,Walk-in
560004,Third Place,"Koramangala, Bangalore",Cafe,Zomato
"""

LEAD_SHEET = """KAM,Visit Date,Customer Name,Location Photo,Pincode,Location,GST,Avocado Type,Purchase Manager Name,Purchase Manager Contact,Purchase Official Mail,Delivery Slot,Status,Remarks
Likitha,2/14/2026,Hot Kitchen,http://img/1.jpg,560001,"12.97, 77.59",29ABC,Hass,Ravi,98450,ravi@hot.example.com,Morning,Lead,keen
Sonu,2/15/2026,Dotted Pin,,.,,,Indian,,,,,Hot Lead,
Likitha,2/16/2026,Just Visited,,560001,,,,,,,,Visited,
Unknown,bad-date,Mystery Eats,,560005,"not, numbers",,None,,,,,lead,
"""


def _reader(text):
    return csv.DictReader(io.StringIO(text))


class TestParsingHelpers:

    def test_locality_before_city(self):
        assert locality_from_location("12 Church St, Ashok Nagar, Bangalore, Karnataka") == "Ashok Nagar"

    def test_locality_without_city(self):
        assert locality_from_location("Indiranagar, Bengaluru") == "Indiranagar"

    def test_locality_city_first(self):
        assert locality_from_location("Bangalore, Karnataka") == "Bangalore"

    def test_locality_blank(self):
        assert locality_from_location("") == ""

    def test_sheet_date(self):
        assert parse_sheet_date("2/14/2026") == date(2026, 2, 14)
        assert parse_sheet_date("14/2/2026") is None
        assert parse_sheet_date("") is None

    def test_lat_lng(self):
        assert parse_lat_lng("12.97, 77.59") == (12.97, 77.59)
        assert parse_lat_lng("not, numbers") == (None, None)
        assert parse_lat_lng("12.97") == (None, None)

    def test_avocado_consumption(self):
        assert avocado_consumption("Haas") == "Yes - Imported"
        assert avocado_consumption("indian") == "Yes - Indian"
        assert avocado_consumption("None") is None


class TestTransforms:

    def test_prospect_rows(self):
        rows, skipped = transform_prospect_rows(_reader(PROSPECT_SHEET))
        assert skipped == 2
        assert [r["restaurant_name"] for r in rows] == ["Leaf Cafe", "Bowl House", "Third Place"]
        assert rows[0]["locality"] == "Ashok Nagar"
        assert rows[0]["cuisine_type"] == "Cafe"
        assert rows[0]["tag"] == "New"
        assert rows[0]["status"] == "available"

    def test_lead_rows_keep_only_leads(self):
        rows, skipped = transform_lead_rows(
            _reader(LEAD_SHEET),
            kam_map={"Likitha": "likhitha@example.com"},
            prospects={("hot kitchen", "560001"): "p-hot"},
        )
        assert skipped == 1
        assert [r["client_name"] for r in rows] == ["Hot Kitchen", "Dotted Pin", "Mystery Eats"]

        hot = rows[0]
        assert hot["prospect_id"] == "p-hot"
        assert hot["created_by"] == "likhitha@example.com"
        assert hot["status"] == "qualified"
        assert hot["visit_count"] == 1
        assert hot["geo_lat"] == 12.97
        assert hot["appointment_date"] == date(2026, 2, 14)
        assert hot["avocado_consumption"] == "Yes - Imported"

        assert rows[1]["pincode"] == "000000"
        assert rows[1]["created_by"] is None
        assert rows[2]["appointment_date"] is None
        assert rows[2]["last_activity_date"] is None


class TestImport:

    def test_import_prospects_in_batches(self, app):
        result = csv_service.import_prospects(io.StringIO(PROSPECT_SHEET), batch_size=2)
        assert (result.success, result.failed, result.skipped) == (3, 0, 2)
        assert Prospect.query.count() == 3

    def test_failed_batch_does_not_discard_others(self, app):
        real = csv_service.Prospect
        calls = {"n": 0}

        def flaky(**values):
            calls["n"] += 1
            if calls["n"] == 3:
                return real(**dict(values, restaurant_name=None))
            return real(**values)

        result = csv_service._insert_batches(
            flaky,
            transform_prospect_rows(_reader(PROSPECT_SHEET))[0],
            2,
            "Prospect",
        )
        assert result.success == 2
        assert result.failed == 1
        assert real.query.count() == 2

    def test_import_leads_matches_prospects(self, app, seed_data):
        result = csv_service.import_leads(
            io.StringIO(LEAD_SHEET), kam_map=app.config["KAM_EMAIL_MAP"], batch_size=2
        )
        assert result.success == 3
        assert result.skipped == 1
        lead = Lead.query.filter_by(created_by="likhitha@example.com", client_name="Hot Kitchen").first()
        assert lead.prospect_id == seed_data["hot_id"]
        assert lead.created_by == "likhitha@example.com"

    def test_export_prospects(self, app, seed_data):
        out = io.StringIO()
        count = csv_service.export_prospects(out)
        assert count == 5
        rows = list(csv.reader(io.StringIO(out.getvalue())))
        assert rows[0] == ["id", "restaurant_name", "pincode", "locality"]
        assert {r[1] for r in rows[1:]} >= {"Cold Cafe", "Far Grill"}


class TestCli:

    def test_create_admin_is_idempotent(self, app):
        runner = app.test_cli_runner()
        args = ["create-admin", "--email", "Boss@example.com", "--password", "s3cret-pass"]
        result = runner.invoke(args=args)
        assert "Created admin user: boss@example.com" in result.output
        result = runner.invoke(args=args)
        assert "User already exists" in result.output

    def test_import_and_export_commands(self, app, tmp_path):
        source = tmp_path / "prospects.csv"
        source.write_text(PROSPECT_SHEET, encoding="utf-8")
        runner = app.test_cli_runner()

        result = runner.invoke(args=["import-prospects", str(source)])
        assert "Inserted: 3, Failed: 0, Skipped: 2" in result.output

        target = tmp_path / "export.csv"
        result = runner.invoke(args=["export-prospects", str(target)])
        assert "Exported 3 prospects" in result.output
        assert target.read_text(encoding="utf-8").startswith("id,restaurant_name,pincode,locality")

    def test_import_leads_command(self, app, seed_data, tmp_path):
        source = tmp_path / "lead.csv"
        source.write_text(LEAD_SHEET, encoding="utf-8")
        result = app.test_cli_runner().invoke(args=["import-leads", str(source)])
        assert "Inserted: 3, Failed: 0, Skipped: 1" in result.output
