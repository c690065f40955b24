"""
View projection: the filtered, sorted rows and KPI totals shown on the dashboard.

Everything here is a pure function of the cached rows and the current
criteria. Nothing mutates the cache; sorting is a view concern only.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from hospitaldesk.services.row_cache import SchemaFeatures
from hospitaldesk.services.scoring_service import STATUS_CLOSED, is_closed

ALL_CITIES = "All cities"
ALL_STATUSES = "All statuses"

SortKey = Literal["name", "created_at"]
SortDir = Literal["asc", "desc"]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ViewCriteria:
    search: str = ""
    city: Optional[str] = ALL_CITIES
    status: Optional[str] = ALL_STATUSES
    sort_key: SortKey = "name"
    sort_dir: SortDir = "asc"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Totals:
    total: int
    closed: int
    open: int
    telemedicine: int
    cold_emailed: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _haystack(row: Dict[str, Any]) -> str:
    emails = row.get("emails") if isinstance(row.get("emails"), list) else []
    phones = row.get("phones") if isinstance(row.get("phones"), list) else []
    parts = [
        row.get("name") or "",
        row.get("city") or "",
        " ".join(str(e) for e in emails),
        " ".join(str(p) for p in phones),
        row.get("address") or "",
    ]
    return " ".join(parts).lower()


def matches(row: Dict[str, Any], criteria: ViewCriteria) -> bool:
    needle = (criteria.search or "").strip().lower()
    if needle and needle not in _haystack(row):
        return False
    if criteria.city not in (None, ALL_CITIES) and (row.get("city") or "") != criteria.city:
        return False
    if criteria.status not in (None, ALL_STATUSES) and (row.get("status") or "") != criteria.status:
        return False
    return True


def _timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            # bare years ("2021") still order chronologically
            if value[:4].isdigit():
                return datetime(int(value[:4]), 1, 1, tzinfo=timezone.utc)
            return _EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _EPOCH


def _name_key(row: Dict[str, Any]):
    name = row.get("name") or ""
    return (name.casefold(), name)


def sort_rows(rows: List[Dict[str, Any]], sort_key: str, sort_dir: str) -> List[Dict[str, Any]]:
    """Stable sort by name or created_at; any other key keeps the incoming order."""
    descending = sort_dir == "desc"
    if sort_key == "name":
        return sorted(rows, key=_name_key, reverse=descending)
    if sort_key == "created_at":
        return sorted(rows, key=lambda r: _timestamp(r.get("created_at")), reverse=descending)
    return list(rows)


def project(rows: List[Dict[str, Any]], criteria: ViewCriteria) -> List[Dict[str, Any]]:
    return sort_rows([r for r in rows if matches(r, criteria)], criteria.sort_key, criteria.sort_dir)


def totals(rows: List[Dict[str, Any]], features: SchemaFeatures) -> Totals:
    total = len(rows)
    closed = sum(1 for r in rows if is_closed(r.get("status")))
    telemedicine = sum(1 for r in rows if r.get("telemedicine") is True)
    emailed = sum(1 for r in rows if r.get("cold_emailed") is True) if features.cold_emailed else 0
    return Totals(total=total, closed=closed, open=total - closed,
                  telemedicine=telemedicine, cold_emailed=emailed)


def _options(rows: List[Dict[str, Any]], field: str, sentinel: str) -> List[str]:
    values = {(r.get(field) or "").strip() for r in rows}
    return [sentinel] + sorted(v for v in values if v)


def city_options(rows: List[Dict[str, Any]]) -> List[str]:
    return _options(rows, "city", ALL_CITIES)


def status_options(rows: List[Dict[str, Any]]) -> List[str]:
    return _options(rows, "status", ALL_STATUSES)


def toggle_sort(criteria: ViewCriteria, key: str) -> ViewCriteria:
    """Clicking the active column flips direction; a new column starts ascending."""
    if criteria.sort_key == key:
        return replace(criteria, sort_dir="desc" if criteria.sort_dir == "asc" else "asc")
    return replace(criteria, sort_key=key, sort_dir="asc")


def toggle_closed_filter(criteria: ViewCriteria) -> ViewCriteria:
    status = ALL_STATUSES if criteria.status == STATUS_CLOSED else STATUS_CLOSED
    return replace(criteria, status=status)
