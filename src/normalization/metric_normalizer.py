"""
Metric Normalizer

Extracts unified metrics from provider-specific Terra payloads. All functions
are pure and take the mapping table as a parameter.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from normalization.models import MetricMapping, NormalizedMetricRecord, Number, PathStep


def is_number(value: Any) -> bool:
    """True for native JSON numbers; bools and numeric strings do not count."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def resolve_path(payload: Any, steps: Sequence[PathStep]) -> Any:
    """
    Walk parsed path steps through nested dicts and lists.

    Returns None as soon as a key is missing, a container has the wrong type
    or an index is out of range.
    """
    value = payload
    for step in steps:
        if not isinstance(value, dict):
            return None
        value = value.get(step.key)
        if step.index is not None:
            if not isinstance(value, list) or step.index >= len(value):
                return None
            value = value[step.index]
    return value


def extract(payload: Dict[str, Any], mapping: MetricMapping) -> Optional[Number]:
    """
    Extract one metric value from a payload.

    Candidate paths are probed in priority order and the first numeric value
    wins. The mapping's transformer, if any, is applied to that value.

    Args:
        payload: Parsed provider payload (one Terra data item)
        mapping: Metric mapping to extract

    Returns:
        Normalized value, or None when no candidate path holds a number
    """
    for steps in mapping.parsed_paths:
        value = resolve_path(payload, steps)
        if is_number(value):
            return mapping.transformer(value) if mapping.transformer else value
    return None


def extract_all(payload: Dict[str, Any], mappings: Mapping[str, MetricMapping]) -> List[NormalizedMetricRecord]:
    """
    Extract every known metric present in a payload.

    Args:
        payload: Parsed provider payload
        mappings: Metric table keyed by metric key

    Returns:
        Records for metrics that resolved to a value, in table order
    """
    records = []
    for key, mapping in mappings.items():
        value = extract(payload, mapping)
        if value is None:
            continue
        records.append(
            NormalizedMetricRecord(
                metric_key=key,
                name=mapping.canonical_name,
                unit=mapping.unit,
                category=mapping.category,
                value=value,
            )
        )
    return records


def reverse_lookup(field_name: str, mappings: Mapping[str, MetricMapping]) -> Optional[Dict[str, str]]:
    """
    Find the unified metric that reads a bare provider field name.

    A mapping matches when one of its paths equals ``field_name`` or ends in
    ``.<field_name>``. The first matching mapping in table order wins.

    Args:
        field_name: Provider field name, e.g. "hrv_rmssd_ms"
        mappings: Metric table

    Returns:
        ``{"name", "unit", "category"}`` or None for unknown fields
    """
    suffix = f".{field_name}"
    for mapping in mappings.values():
        if any(path == field_name or path.endswith(suffix) for path in mapping.source_field_paths):
            return mapping.describe()
    return None


def normalize_provider_name(provider: Optional[str]) -> str:
    return (provider or "").strip().lower()
