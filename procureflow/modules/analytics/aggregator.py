from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

from ...db.filters import get_path, is_missing, matches
from ...domain.entities import EntityType, entity_type_of
from ...domain.rounding import round_half_even, to_decimal
from ...domain.statuses import ApprovalStatus
from ...errors import ValidationError
from ...observability.logging import get_logger
from ...repositories.entity_store import EntityStore

log = get_logger(__name__)

UNKNOWN = "unknown"
TIME_BUCKETS = ("day", "week", "month")


def _parse_dt(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _is_date_only(value: Any) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    # YYYY-MM-DD
    return len(str(value or "").strip()) == 10


def _range_end(value: Any) -> datetime | None:
    """Inclusive upper bound; a bare date covers the whole of that day."""
    dt = _parse_dt(value)
    if dt is not None and _is_date_only(value):
        dt = dt + timedelta(days=1) - timedelta(microseconds=1)
    return dt


def time_bucket(value: Any, bucket: str) -> str:
    dt = _parse_dt(value)
    if dt is None:
        return UNKNOWN
    dt = dt.astimezone(timezone.utc)
    if bucket == "day":
        return dt.date().isoformat()
    if bucket == "week":
        # ISO week, labelled by its Monday.
        monday = dt.date() - timedelta(days=dt.weekday())
        return monday.isoformat()
    return f"{dt.year:04d}-{dt.month:02d}"


def _group_key(doc: Mapping[str, Any], group_by: str, bucket: str | None, date_field: str) -> str:
    if bucket:
        raw = get_path(doc, date_field)
        return time_bucket(None if is_missing(raw) else raw, bucket)
    value = get_path(doc, group_by)
    if is_missing(value) or value is None or value == "":
        return UNKNOWN
    return str(getattr(value, "value", value))


def _numeric(value: Any) -> Decimal | None:
    if is_missing(value) or value is None or isinstance(value, bool):
        return None
    try:
        return to_decimal(value)
    except ArithmeticError:
        return None


def aggregate(
    items: Iterable[Mapping[str, Any]],
    *,
    group_by: str = "status",
    bucket: str | None = None,
    date_field: str = "createdAt",
    value_field: str | None = None,
    filters: Mapping[str, Any] | None = None,
    date_from: Any = None,
    date_to: Any = None,
) -> dict[str, Any]:
    """
    Group projections by a dotted field (or a day/week/month time bucket over
    `date_field`) and compute count, sum and average of `value_field`.

    Missing group values land in the `unknown` bucket; missing values count
    towards `count` but not towards `sum`/`average`.
    """
    if bucket is not None and bucket not in TIME_BUCKETS:
        raise ValidationError(message=f"Unknown time bucket '{bucket}'", details={"supported": list(TIME_BUCKETS)})
    start = _parse_dt(date_from) if date_from is not None else None
    end = _range_end(date_to) if date_to is not None else None
    if (date_from is not None and start is None) or (date_to is not None and end is None):
        raise ValidationError(message="date_from/date_to must be ISO-8601 dates")

    groups: dict[str, dict[str, Any]] = {}
    total_count = 0
    total_sum = Decimal(0)
    for doc in items:
        if filters and not matches(doc, filters):
            continue
        if start is not None or end is not None:
            raw = get_path(doc, date_field)
            dt = _parse_dt(None if is_missing(raw) else raw)
            if dt is None:
                continue
            if start is not None and dt < start:
                continue
            if end is not None and dt > end:
                continue

        key = _group_key(doc, group_by, bucket, date_field)
        g = groups.setdefault(key, {"count": 0, "sum": Decimal(0), "valued": 0})
        g["count"] += 1
        total_count += 1
        if value_field:
            v = _numeric(get_path(doc, value_field))
            if v is not None:
                g["sum"] += v
                g["valued"] += 1
                total_sum += v

    out_groups = []
    for key in sorted(groups):
        g = groups[key]
        avg = g["sum"] / g["valued"] if g["valued"] else Decimal(0)
        out_groups.append(
            {
                "key": key,
                "count": g["count"],
                "sum": round_half_even(g["sum"]),
                "average": round_half_even(avg),
            }
        )
    return {
        "groupBy": bucket or group_by,
        "valueField": value_field,
        "total": total_count,
        "sum": round_half_even(total_sum),
        "groups": out_groups,
    }


class AnalyticsService:
    """Read-only rollups over entity projections."""

    def __init__(self, *, store: EntityStore, page_size: int = 500):
        self.store = store
        self.page_size = int(page_size)

    def _scan(self, entity_type: EntityType, filters: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        page = 1
        while True:
            resp = self.store.query(entity_type, filters, page=page, page_size=self.page_size)
            out.extend(resp["items"])
            if page * resp["pageSize"] >= resp["total"]:
                return out
            page += 1

    def rollup(
        self,
        entity_type: Any,
        *,
        group_by: str = "status",
        bucket: str | None = None,
        date_field: str = "createdAt",
        value_field: str | None = None,
        filters: Mapping[str, Any] | None = None,
        date_from: Any = None,
        date_to: Any = None,
    ) -> dict[str, Any]:
        et = entity_type_of(entity_type)
        items = self._scan(et, filters)
        result = aggregate(
            items,
            group_by=group_by,
            bucket=bucket,
            date_field=date_field,
            value_field=value_field,
            date_from=date_from,
            date_to=date_to,
        )
        result["entityType"] = et.value
        log.info("analytics.rollup", entity_type=et.value, group_by=result["groupBy"], total=result["total"])
        return result

    def approval_summary(
        self,
        *,
        filters: Mapping[str, Any] | None = None,
        date_from: Any = None,
        date_to: Any = None,
    ) -> dict[str, Any]:
        items = self._scan(EntityType.APPROVAL, filters)
        by_status = aggregate(items, group_by="status", date_from=date_from, date_to=date_to)

        start = _parse_dt(date_from) if date_from is not None else None
        end = _range_end(date_to) if date_to is not None else None
        times: list[Decimal] = []
        for doc in items:
            created = _parse_dt(doc.get("createdAt"))
            if (start is not None or end is not None) and created is None:
                continue
            if start is not None and created < start:
                continue
            if end is not None and created > end:
                continue
            for step in doc.get("steps") or []:
                rt = _numeric(step.get("responseTime"))
                if rt is not None:
                    times.append(rt)

        counts = {g["key"]: g["count"] for g in by_status["groups"]}
        avg_hours = (sum(times, Decimal(0)) / len(times) / Decimal(3600)) if times else Decimal(0)
        return {
            "total": by_status["total"],
            "byStatus": counts,
            "pending": counts.get(ApprovalStatus.PENDING.value, 0) + counts.get(ApprovalStatus.ESCALATED.value, 0),
            "averageResponseHours": round_half_even(avg_hours),
            "decidedSteps": len(times),
        }
