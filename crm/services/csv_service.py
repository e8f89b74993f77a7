"""CSV service — bulk import and export of pipeline records.

Two sheet formats come from the field team:
  - the prospect sheet (pincode, restaurant name, location, type, source),
  - the lead sheet (KAM, visit date, customer name, status, ...), of which
    only rows whose status mentions "lead" are imported.

Columns are located by header pattern, not position. Imports are written
in batches of IMPORT_BATCH_SIZE; each batch commits on its own so one bad
batch does not discard the others.
"""

import csv
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy.exc import SQLAlchemyError

from crm.extensions import db
from crm.models.lead import Lead
from crm.models.prospect import Prospect

logger = logging.getLogger(__name__)

UNKNOWN_PINCODE = "000000"
HOME_CITY = "bangalore"

PROSPECT_COLUMNS = {
    "pincode": r"pincode",
    "restaurant_name": r"restaurant.*name",
    "location": r"^location$",
    "cuisine_type": r"^(type|cuisine_type)$",
    "source": r"source",
    "locality": r"^locality$",
}

LEAD_COLUMNS = {
    "kam": r"^KAM$",
    "visit_date": r"visit date",
    "customer_name": r"customer name",
    "location_photo": r"location photo",
    "pincode": r"^pincode$",
    "location": r"^location$",
    "gst": r"^GST$",
    "avocado_type": r"avocado type",
    "purchase_manager_name": r"purchase manager name",
    "purchase_manager_contact": r"purchase manager contact",
    "purchase_mail": r"purchase official mail",
    "delivery_slot": r"delivery slot",
    "status": r"^status$",
    "remarks": r"remarks",
}

EXPORT_HEADER = ["id", "restaurant_name", "pincode", "locality"]


@dataclass
class ImportResult:
    success: int = 0
    failed: int = 0
    skipped: int = 0


# ── Parsing helpers ───────────────────────────────────────────────

def _column_map(fieldnames, patterns):
    """Map logical names to the first header matching each pattern."""
    found = {}
    for key, pattern in patterns.items():
        regex = re.compile(pattern, re.IGNORECASE)
        found[key] = next((h for h in fieldnames or [] if h and regex.search(h.strip())), None)
    return found


def _getter(row, columns):
    def get(key):
        header = columns.get(key)
        if header is None:
            return ""
        return (row.get(header) or "").strip()
    return get


def locality_from_location(location):
    """The address part before the city name, else the first part."""
    if not location:
        return ""
    parts = [p.strip() for p in location.split(",")]
    city_at = next((i for i, p in enumerate(parts) if p.lower() == HOME_CITY), -1)
    if city_at > 0:
        return parts[city_at - 1]
    return parts[0] or ""


def parse_sheet_date(value):
    """Parse an M/D/YYYY sheet date. None when blank or malformed."""
    if not value or not value.strip():
        return None
    parts = value.strip().split("/")
    if len(parts) != 3:
        return None
    month, day, year = parts
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_lat_lng(value):
    """Split a "lat, lng" cell. Unparseable halves are None."""
    if not value or not value.strip():
        return None, None
    parts = [p.strip() for p in value.split(",")]
    if len(parts) < 2:
        return None, None

    def _num(text):
        try:
            return float(text)
        except ValueError:
            return None

    return _num(parts[0]), _num(parts[1])


def avocado_consumption(avocado_type):
    kind = (avocado_type or "").strip().lower()
    if "haas" in kind or "hass" in kind:
        return "Yes - Imported"
    if "indian" in kind:
        return "Yes - Indian"
    return None


# ── Prospects ─────────────────────────────────────────────────────

def transform_prospect_rows(reader):
    """Turn prospect sheet rows into Prospect column dicts.

    Rows without a restaurant name or pincode are skipped.

    Returns:
        (rows, skipped)
    """
    columns = _column_map(reader.fieldnames, PROSPECT_COLUMNS)
    rows, skipped = [], 0
    for raw in reader:
        get = _getter(raw, columns)
        name = get("restaurant_name")
        pincode = get("pincode")
        if not name or not pincode:
            skipped += 1
            continue
        location = get("location")
        rows.append({
            "restaurant_name": name,
            "pincode": pincode,
            "locality": get("locality") or locality_from_location(location),
            "location": location or None,
            "source": get("source") or None,
            "cuisine_type": get("cuisine_type") or None,
            "tag": "New",
            "status": "available",
        })
    return rows, skipped


# ── Leads ─────────────────────────────────────────────────────────

def prospect_index():
    """(lower-cased name, pincode) -> prospect id, for lead matching."""
    index = {}
    for pid, name, pincode in db.session.query(
        Prospect.id, Prospect.restaurant_name, Prospect.pincode
    ):
        index.setdefault(((name or "").strip().lower(), (pincode or "").strip()), pid)
    return index


def transform_lead_rows(reader, kam_map=None, prospects=None):
    """Turn lead sheet rows into Lead column dicts.

    Only rows whose status mentions "lead" and that carry a customer name
    are kept. Imported leads arrive qualified with one visit on record.

    Args:
        reader: csv.DictReader over the lead sheet.
        kam_map: KAM display name -> email, used for created_by.
        prospects: prospect_index() mapping for prospect matching.

    Returns:
        (rows, skipped)
    """
    kam_map = kam_map or {}
    prospects = prospects or {}
    columns = _column_map(reader.fieldnames, LEAD_COLUMNS)

    rows, skipped = [], 0
    for raw in reader:
        get = _getter(raw, columns)
        status = get("status")
        name = get("customer_name")
        if "lead" not in status.lower() or not name:
            skipped += 1
            continue

        pincode = get("pincode")
        if not pincode or pincode == ".":
            pincode = UNKNOWN_PINCODE

        visited = parse_sheet_date(get("visit_date"))
        lat, lng = parse_lat_lng(get("location"))

        rows.append({
            "client_name": name,
            "pincode": pincode,
            "locality": None,
            "gst_id": get("gst") or None,
            "avocado_consumption": avocado_consumption(get("avocado_type")),
            "purchase_manager_name": get("purchase_manager_name") or None,
            "pm_contact": get("purchase_manager_contact") or None,
            "email": get("purchase_mail") or None,
            "last_activity_date": (
                datetime.combine(visited, time.min, tzinfo=timezone.utc) if visited else None
            ),
            "appointment_date": visited,
            "appointment_time": get("delivery_slot") or None,
            "outlet_photo_url": get("location_photo") or None,
            "remarks": get("remarks") or None,
            "status": "qualified",
            "created_by": kam_map.get(get("kam")),
            "geo_lat": lat,
            "geo_lng": lng,
            "prospect_id": prospects.get((name.lower(), pincode)),
            "call_count": 0,
            "visit_count": 1,
        })
    return rows, skipped


# ── Writing ───────────────────────────────────────────────────────

def _insert_batches(model, rows, batch_size, label):
    result = ImportResult()
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        number = start // batch_size + 1
        try:
            db.session.add_all([model(**values) for values in batch])
            db.session.commit()
            result.success += len(batch)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"{label} batch {number} failed: {e}")
            result.failed += len(batch)
    return result


def import_prospects(stream, batch_size=100):
    """Import the prospect sheet from a text stream."""
    rows, skipped = transform_prospect_rows(csv.DictReader(stream))
    result = _insert_batches(Prospect, rows, batch_size, "Prospect")
    result.skipped = skipped
    logger.info(
        f"Prospect import: {result.success} inserted, "
        f"{result.failed} failed, {result.skipped} skipped"
    )
    return result


def import_leads(stream, kam_map=None, batch_size=100):
    """Import the lead sheet from a text stream, matching prospects by name + pincode."""
    rows, skipped = transform_lead_rows(
        csv.DictReader(stream), kam_map=kam_map, prospects=prospect_index()
    )
    result = _insert_batches(Lead, rows, batch_size, "Lead")
    result.skipped = skipped
    logger.info(
        f"Lead import: {result.success} inserted, "
        f"{result.failed} failed, {result.skipped} skipped"
    )
    return result


def export_prospects(stream):
    """Write id, restaurant_name, pincode, locality for every prospect.

    Returns:
        Number of prospect rows written.
    """
    writer = csv.writer(stream)
    writer.writerow(EXPORT_HEADER)
    count = 0
    query = db.session.query(
        Prospect.id, Prospect.restaurant_name, Prospect.pincode, Prospect.locality
    ).order_by(Prospect.created_at.desc())
    for row in query:
        writer.writerow([row.id, row.restaurant_name, row.pincode, row.locality or ""])
        count += 1
    return count
