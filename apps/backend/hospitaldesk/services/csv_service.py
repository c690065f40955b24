"""
CSV import/export for hospital rows.

Import is best-effort: every mapped row is inserted on its own,
one after another, and a failing row never stops the rest. There is no
transaction around the batch.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pytz

from hospitaldesk.services.row_cache import SchemaFeatures
from hospitaldesk.services.scoring_service import score_from_rating, validate_rating
from hospitaldesk.services.store_client import RemoteStore

SYNONYMS = {
    "name": ("name", "hospital", "hospital_name"),
    "city": ("city", "town"),
    "website": ("website", "url", "site", "web"),
    "address": ("address", "street_address"),
    "linkedin": ("linkedin", "linkedin_url"),
    "emails": ("emails", "email", "email_address", "email_addresses"),
    "phones": ("phones", "phone", "phone_number", "phone_numbers", "telephone"),
    "telemedicine": ("telemedicine", "telehealth"),
    "status": ("status",),
    "manual_rating": ("manual_rating", "rating"),
    "cold_emailed": ("cold_emailed", "emailed"),
}

MULTI_VALUED = ("emails", "phones")
BOOLEAN_FIELDS = ("telemedicine", "cold_emailed")

EXPORT_COLUMNS = ["name", "city", "status", "cold_emailed", "website", "emails", "phones"]

_SPLIT = re.compile(r"[;,]")


@dataclass
class ImportReport:
    inserted: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"inserted": self.inserted, "failed": self.failed,
                "skipped": self.skipped, "errors": list(self.errors)}


def normalize_key(key: Any) -> str:
    return re.sub(r"[\s\-]+", "_", str(key or "").strip().lower())


def split_multi(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = value
    else:
        parts = _SPLIT.split(str(value))
    return [str(p).strip() for p in parts if str(p).strip()]


def parse_flag(value: Any) -> Any:
    """y/yes... -> True, n/no... -> False, blank -> None, anything else untouched."""
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    if text.startswith("y"):
        return True
    if text.startswith("n"):
        return False
    return value


def _pick(normalized: Dict[str, Any], target: str) -> Any:
    for synonym in SYNONYMS[target]:
        value = normalized.get(synonym)
        if value is not None and str(value).strip() != "":
            return value
    return None


def map_import_record(raw: Dict[str, Any], features: Optional[SchemaFeatures] = None) -> Optional[Dict[str, Any]]:
    """
    Map one loosely-typed row onto an insert payload.

    Args:
        raw: Row keyed by whatever headers the file had
        features: Schema features; cold_emailed is only mapped when present

    Returns:
        dict payload, or None when no name synonym holds a value
    """
    normalized = {normalize_key(k): v for k, v in raw.items() if k is not None}

    name = _pick(normalized, "name")
    if name is None:
        return None

    record: Dict[str, Any] = {"name": str(name).strip()}
    for target in ("city", "website", "address", "linkedin", "status"):
        value = _pick(normalized, target)
        if value is not None:
            record[target] = str(value).strip()

    for target in MULTI_VALUED:
        record[target] = split_multi(_pick(normalized, target))

    for target in BOOLEAN_FIELDS:
        if target == "cold_emailed" and not (features and features.cold_emailed):
            continue
        value = _pick(normalized, target)
        record[target] = parse_flag(value)

    rating = _pick(normalized, "manual_rating")
    if rating is not None:
        try:
            record["manual_rating"] = validate_rating(rating)
            record["score"] = score_from_rating(record["manual_rating"])
        except ValueError as e:
            print(f"⚠️  Ignoring rating {rating!r} for {record['name']}: {e}")

    return record


def parse_csv(text: str) -> List[Dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    return [row for row in reader]


async def import_records(store: RemoteStore, table: str, records: Iterable[Dict[str, Any]],
                         features: Optional[SchemaFeatures] = None) -> ImportReport:
    report = ImportReport()
    for index, raw in enumerate(records, start=1):
        try:
            payload = map_import_record(raw, features)
        except Exception as e:
            print(f"❌ Could not map import row {index}: {e}")
            report.failed += 1
            report.errors.append(f"row {index}: {e}")
            continue
        if payload is None:
            report.skipped += 1
            continue
        try:
            result = await store.insert(table, [payload])
        except Exception as e:
            report.failed += 1
            report.errors.append(f"{payload['name']}: {e}")
            continue
        if result.error is not None:
            report.failed += 1
            report.errors.append(f"{payload['name']}: {result.error.message}")
        else:
            report.inserted += 1

    print(f"✅ Import into {table}: {report.inserted} inserted, {report.failed} failed, {report.skipped} skipped")
    return report


def _cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def export_csv(rows: List[Dict[str, Any]], features: SchemaFeatures) -> str:
    columns = [c for c in EXPORT_COLUMNS if c != "cold_emailed" or features.cold_emailed]
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buffer.write(",".join(columns) + "\n")
    for row in rows:
        writer.writerow([_cell(row.get(c)) for c in columns])
    return buffer.getvalue().rstrip("\n")


def export_filename(now: Optional[datetime] = None, tz_name: str = "UTC") -> str:
    tz = pytz.timezone(tz_name)
    now = now.astimezone(tz) if now else datetime.now(tz)
    return f"hospitals-export-{now.strftime('%Y-%m-%d')}.csv"
