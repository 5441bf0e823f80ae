"""
Unified Metric Mappings

Maps the field names used by the different Terra providers (Whoop, Garmin,
Oura, Withings, ...) onto one metric vocabulary. Candidate paths are listed
in priority order.
"""

import math
from types import MappingProxyType
from typing import Iterable, Mapping

from normalization.models import MetricMapping, Number
from utils.exceptions import ConfigurationError


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive values (5.25 -> 5.3 at one digit)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def seconds_to_hours(seconds: Number) -> float:
    """Convert seconds to hours rounded to one decimal place."""
    return round_half_up(seconds / 3600, 1)


_DEFINITIONS = (
    # Recovery
    MetricMapping(
        key="recovery_score",
        source_field_paths=("recovery_score", "recovery.score", "recovery_score_percentage", "recovery_percentage"),
        canonical_name="Recovery Score",
        unit="%",
        category="recovery",
    ),
    MetricMapping(
        key="training_readiness",
        source_field_paths=(
            "training_readiness",
            "readiness_score",
            "training_readiness_score",
            "body_battery.score",
            "body_battery",
        ),
        canonical_name="Training Readiness",
        unit="%",
        category="recovery",
    ),
    MetricMapping(
        key="body_battery",
        source_field_paths=("body_battery", "body_battery.score"),
        canonical_name="Body Battery",
        unit="%",
        category="recovery",
    ),
    # Strain
    MetricMapping(
        key="day_strain",
        source_field_paths=("day_strain", "strain", "score.strain", "strain_score"),
        canonical_name="Day Strain",
        unit="",
        category="workout",
    ),
    # Heart rate
    MetricMapping(
        key="resting_hr",
        source_field_paths=("resting_hr_bpm", "resting_heart_rate_bpm", "resting_hr", "resting_heart_rate"),
        canonical_name="Resting Heart Rate",
        unit="bpm",
        category="cardio",
    ),
    MetricMapping(
        key="avg_hr",
        source_field_paths=("heart_rate_data.avg_hr_bpm", "avg_hr_bpm"),
        canonical_name="Average Heart Rate",
        unit="bpm",
        category="cardio",
    ),
    MetricMapping(
        key="max_hr",
        source_field_paths=("heart_rate_data.max_hr_bpm", "max_hr_bpm"),
        canonical_name="Max Heart Rate",
        unit="bpm",
        category="cardio",
    ),
    # Sleep
    MetricMapping(
        key="sleep_duration",
        source_field_paths=("duration_seconds", "duration_sec", "duration", "sleep_duration_seconds"),
        canonical_name="Sleep Duration",
        unit="h",
        category="sleep",
        transformer=seconds_to_hours,
    ),
    MetricMapping(
        key="sleep_efficiency",
        source_field_paths=("sleep_efficiency_percentage", "sleep.efficiency_percentage"),
        canonical_name="Sleep Efficiency",
        unit="%",
        category="sleep",
    ),
    MetricMapping(
        key="sleep_performance",
        source_field_paths=("sleep_performance_percentage", "sleep.performance_percentage"),
        canonical_name="Sleep Performance",
        unit="%",
        category="sleep",
    ),
    MetricMapping(
        key="deep_sleep_duration",
        source_field_paths=(
            "sleep_durations_data.asleep.duration_asleep_state_deep_sleep_seconds",
            "asleep.duration_asleep_state_deep_sleep_seconds",
            "duration_asleep_state_deep_sleep_seconds",
            "deep_sleep_duration_seconds",
        ),
        canonical_name="Deep Sleep Duration",
        unit="h",
        category="sleep",
        transformer=seconds_to_hours,
    ),
    MetricMapping(
        key="light_sleep_duration",
        source_field_paths=(
            "sleep_durations_data.asleep.duration_asleep_state_light_sleep_seconds",
            "asleep.duration_asleep_state_light_sleep_seconds",
            "duration_asleep_state_light_sleep_seconds",
            "light_sleep_duration_seconds",
        ),
        canonical_name="Light Sleep Duration",
        unit="h",
        category="sleep",
        transformer=seconds_to_hours,
    ),
    MetricMapping(
        key="rem_sleep_duration",
        source_field_paths=(
            "sleep_durations_data.asleep.duration_asleep_state_rem_sleep_seconds",
            "asleep.duration_asleep_state_rem_sleep_seconds",
            "duration_asleep_state_rem_sleep_seconds",
            "rem_sleep_duration_seconds",
        ),
        canonical_name="REM Sleep Duration",
        unit="h",
        category="sleep",
        transformer=seconds_to_hours,
    ),
    MetricMapping(
        key="awake_duration",
        source_field_paths=(
            "sleep_durations_data.awake.duration_awake_state_seconds",
            "awake.duration_awake_state_seconds",
            "duration_awake_state_seconds",
            "awake_duration_seconds",
        ),
        canonical_name="Awake Duration",
        unit="h",
        category="sleep",
        transformer=seconds_to_hours,
    ),
    # HRV
    MetricMapping(
        key="hrv_rmssd",
        source_field_paths=(
            "hrv_rmssd_ms",
            "hrv.rmssd_ms",
            "hrv.rmssd_milli",
            "heart_rate_data.summary.avg_hrv_rmssd",
        ),
        canonical_name="HRV RMSSD",
        unit="ms",
        category="recovery",
    ),
    # Activity
    MetricMapping(
        key="steps",
        source_field_paths=("steps", "steps_data.steps"),
        canonical_name="Steps",
        unit="steps",
        category="activity",
    ),
    MetricMapping(
        key="calories",
        source_field_paths=("calories_data.total_burned_calories", "total_burned_calories", "calories_burned"),
        canonical_name="Active Calories",
        unit="kcal",
        category="workout",
    ),
    # Body
    MetricMapping(
        key="weight",
        source_field_paths=("weight_kg", "measurements_data.measurements[0].weight_kg"),
        canonical_name="Weight",
        unit="kg",
        category="body",
    ),
    MetricMapping(
        key="body_fat",
        source_field_paths=(
            "body_fat_percentage",
            "bodyfat_percentage",
            "measurements_data.measurements[0].bodyfat_percentage",
        ),
        canonical_name="Body Fat Percentage",
        unit="%",
        category="body",
    ),
    # VO2Max
    MetricMapping(
        key="vo2max",
        source_field_paths=("oxygen_data.vo2max_ml_per_min_per_kg", "vo2max_ml_per_min_per_kg"),
        canonical_name="VO2Max",
        unit="ml/kg/min",
        category="cardio",
    ),
    # Glucose (Ultrahuman, sent in nutrition webhooks)
    MetricMapping(
        key="blood_glucose",
        source_field_paths=("metadata.glucose_data.avg_glucose_mg_per_dL", "glucose_data.avg_glucose_mg_per_dL"),
        canonical_name="Blood Glucose",
        unit="mg/dL",
        category="health",
    ),
)


def build_unified_metrics(definitions: Iterable[MetricMapping] = _DEFINITIONS) -> Mapping[str, MetricMapping]:
    """
    Build the read-only metric table keyed by metric key.

    Args:
        definitions: Metric mappings in table order

    Returns:
        Read-only mapping of metric key to MetricMapping

    Raises:
        ConfigurationError: If a key or canonical name is defined twice
    """
    table = {}
    owners = {}

    for mapping in definitions:
        if mapping.key in table:
            raise ConfigurationError(f"Duplicate metric key '{mapping.key}'")
        if mapping.canonical_name in owners:
            raise ConfigurationError(
                f"Canonical name '{mapping.canonical_name}' is owned by both "
                f"'{owners[mapping.canonical_name]}' and '{mapping.key}'"
            )
        owners[mapping.canonical_name] = mapping.key
        table[mapping.key] = mapping

    return MappingProxyType(table)


UNIFIED_METRICS = build_unified_metrics()
