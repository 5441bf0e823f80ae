"""
Terra Payload Transformation

Turns the ``data`` items of a Terra webhook into rows for the datastore:

- ``unified_metrics``: one row per extracted metric per day (not for activity items)
- ``workouts``: one row per workout window in an activity item
- ``body_composition``: one row per body measurement day
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

from aws_lambda_powertools import Logger

from normalization.metric_normalizer import (
    extract,
    extract_all,
    is_number,
    normalize_provider_name,
    resolve_path,
)
from normalization.models import MetricMapping, parse_path
from utils.exceptions import TransformationError

logger = Logger(child=True)

DATA_PAYLOAD_TYPES = ("activity", "body", "daily", "sleep", "nutrition", "athlete")

# Items of these types describe single sessions and only produce workout rows
WORKOUT_PAYLOAD_TYPES = ("activity",)

_DATE_PATHS = tuple(
    parse_path(p) for p in ("day", "metadata.start_time", "timestamp", "metadata.end_time", "date")
)
_MUSCLE_MASS_PATHS = tuple(
    parse_path(p) for p in ("muscle_mass_kg", "measurements_data.measurements[0].muscle_mass_kg")
)


@dataclass
class TerraRows:
    """Datastore rows produced from one Terra webhook."""

    metrics: List[Dict[str, Any]] = field(default_factory=list)
    workouts: List[Dict[str, Any]] = field(default_factory=list)
    body_composition: List[Dict[str, Any]] = field(default_factory=list)
    skipped_items: int = 0

    @property
    def total(self) -> int:
        return len(self.metrics) + len(self.workouts) + len(self.body_composition)


def resolve_measurement_date(item: Dict[str, Any]) -> Optional[str]:
    """
    Return the ``YYYY-MM-DD`` day a Terra data item belongs to.

    Sleep items carry ``day``; most others only carry ISO timestamps in
    ``metadata.start_time``.
    """
    for steps in _DATE_PATHS:
        value = resolve_path(item, steps)
        if isinstance(value, str) and value:
            return value.split("T")[0]
    return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def build_metric_rows(
    item: Dict[str, Any],
    user_id: str,
    provider: str,
    mappings: Mapping[str, MetricMapping],
) -> List[Dict[str, Any]]:
    """
    Build ``unified_metrics`` rows for one data item.

    Args:
        item: Terra data item
        user_id: Application user ID
        provider: Upper-cased provider name (e.g. "WHOOP")
        mappings: Metric table

    Returns:
        List of rows (empty when the item has no known metric)

    Raises:
        TransformationError: If metrics are present but no measurement date is
    """
    records = extract_all(item, mappings)
    if not records:
        return []

    measurement_date = resolve_measurement_date(item)
    if not measurement_date:
        raise TransformationError(
            "Data item has metrics but no measurement date",
            source_data={"metrics": [r.metric_key for r in records]},
        )

    return [
        {
            "user_id": user_id,
            "metric_name": record.name,
            "metric_key": record.metric_key,
            "unit": record.unit,
            "category": record.category,
            "value": record.value,
            "measurement_date": measurement_date,
            "source": normalize_provider_name(provider),
            "external_id": f"terra_{provider}_{record.metric_key}_{measurement_date}",
        }
        for record in records
    ]


def _workout_windows(item: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    durations = item.get("active_durations")
    if isinstance(durations, list) and durations:
        for window in durations:
            if isinstance(window, dict):
                yield window
        return

    metadata = item.get("metadata")
    if isinstance(metadata, dict) and metadata.get("start_time") and metadata.get("end_time"):
        yield {
            "activity_type": metadata.get("name") or metadata.get("type"),
            "start_time": metadata["start_time"],
            "end_time": metadata["end_time"],
        }


def build_workout_rows(
    item: Dict[str, Any],
    user_id: str,
    provider: str,
    mappings: Mapping[str, MetricMapping],
) -> List[Dict[str, Any]]:
    """Build ``workouts`` rows for one activity item."""
    rows = []

    for window in _workout_windows(item):
        start = _parse_timestamp(window.get("start_time"))
        end = _parse_timestamp(window.get("end_time"))
        if start is None or end is None:
            logger.warning("Skipping workout window without valid times", extra={"window": window})
            continue

        activity_type = window.get("activity_type")
        rows.append(
            {
                "user_id": user_id,
                "workout_type": str(activity_type) if activity_type not in (None, "") else "Activity",
                "start_time": window["start_time"],
                "end_time": window["end_time"],
                "duration_minutes": round((end - start).total_seconds() / 60),
                "calories_burned": extract(item, mappings["calories"]),
                "heart_rate_avg": extract(item, mappings["avg_hr"]),
                "heart_rate_max": extract(item, mappings["max_hr"]),
                "source": normalize_provider_name(provider),
                "external_id": f"terra_{provider}_{window['start_time']}",
            }
        )

    return rows


def build_body_composition_row(
    item: Dict[str, Any],
    user_id: str,
    provider: str,
    mappings: Mapping[str, MetricMapping],
) -> Optional[Dict[str, Any]]:
    """Build a ``body_composition`` row, or None when the item has no weight or body fat."""
    weight = extract(item, mappings["weight"])
    body_fat = extract(item, mappings["body_fat"])
    if weight is None and body_fat is None:
        return None

    measurement_date = resolve_measurement_date(item)
    if not measurement_date:
        raise TransformationError("Body item has no measurement date", source_data={"weight": weight})

    muscle_mass = None
    for steps in _MUSCLE_MASS_PATHS:
        value = resolve_path(item, steps)
        if is_number(value):
            muscle_mass = value
            break

    return {
        "user_id": user_id,
        "measurement_date": measurement_date,
        "weight": weight,
        "body_fat_percentage": body_fat,
        "muscle_mass": muscle_mass,
        "measurement_method": normalize_provider_name(provider),
    }


def _dedupe(rows: List[Dict[str, Any]], *keys: str) -> List[Dict[str, Any]]:
    # PostgREST rejects an upsert batch that hits the same conflict key twice.
    unique = {}
    for row in rows:
        unique[tuple(row[k] for k in keys)] = row
    return list(unique.values())


def transform_terra_payload(
    payload_type: str,
    data: Any,
    user_id: str,
    provider: str,
    mappings: Mapping[str, MetricMapping],
) -> TerraRows:
    """
    Transform the data items of a Terra webhook into datastore rows.

    Items that cannot be transformed are logged and counted in
    ``skipped_items``; they never abort the remaining items.

    Args:
        payload_type: Terra webhook type (activity, body, daily, ...)
        data: The webhook's ``data`` field (list of items, or a single item)
        user_id: Application user ID
        provider: Provider name as sent by Terra
        mappings: Metric table

    Returns:
        TerraRows with metric, workout and body composition rows
    """
    provider = (normalize_provider_name(provider) or "unknown").upper()
    items = data if isinstance(data, list) else [data] if data else []
    rows = TerraRows()

    for position, item in enumerate(items):
        try:
            if not isinstance(item, dict):
                raise TransformationError(f"Data item at position {position} is not an object")

            if payload_type in WORKOUT_PAYLOAD_TYPES:
                # Per-session values; day totals come from daily webhooks
                rows.workouts.extend(build_workout_rows(item, user_id, provider, mappings))
            else:
                rows.metrics.extend(build_metric_rows(item, user_id, provider, mappings))

            if payload_type == "body":
                body_row = build_body_composition_row(item, user_id, provider, mappings)
                if body_row:
                    rows.body_composition.append(body_row)

        except TransformationError as e:
            rows.skipped_items += 1
            logger.warning(
                "Skipping Terra data item",
                extra={"error": str(e), "position": position, "type": payload_type, "provider": provider},
            )

    rows.metrics = _dedupe(rows.metrics, "measurement_date", "metric_name")
    rows.workouts = _dedupe(rows.workouts, "external_id")
    rows.body_composition = _dedupe(rows.body_composition, "measurement_date")

    return rows
