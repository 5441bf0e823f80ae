"""
Normalization Models

Immutable value types shared by the metric mapping table and the extractor:
parsed field paths, unified metric mappings and extracted metric records.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Union

from utils.exceptions import ConfigurationError

Number = Union[int, float]
Transformer = Callable[[Number], Number]

_SEGMENT_PATTERN = re.compile(r"^(?P<key>[^\[\]]+)(?:\[(?P<index>\d+)\])?$")


@dataclass(frozen=True)
class PathStep:
    """One segment of a dotted field path, e.g. ``measurements[0]``."""

    key: str
    index: Optional[int] = None


def parse_path(path: str) -> Tuple[PathStep, ...]:
    """
    Parse a dotted field path into steps.

    Each dot-separated segment is a key optionally followed by a single
    bracketed numeric index: ``measurements_data.measurements[0].weight_kg``.

    Args:
        path: Dotted path

    Returns:
        Tuple of PathStep

    Raises:
        ConfigurationError: If the path is empty or a segment is malformed
    """
    if not path:
        raise ConfigurationError("Field path must not be empty")

    steps = []
    for segment in path.split("."):
        match = _SEGMENT_PATTERN.match(segment)
        if not match:
            raise ConfigurationError(f"Malformed field path segment '{segment}' in '{path}'")
        index = match.group("index")
        steps.append(PathStep(key=match.group("key"), index=int(index) if index is not None else None))

    return tuple(steps)


@dataclass(frozen=True)
class MetricMapping:
    """
    Unified metric definition.

    ``source_field_paths`` are probed in order against a provider payload;
    the first one holding a number wins.
    """

    key: str
    source_field_paths: Tuple[str, ...]
    canonical_name: str
    unit: str
    category: str
    transformer: Optional[Transformer] = None
    parsed_paths: Tuple[Tuple[PathStep, ...], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.source_field_paths:
            raise ConfigurationError(f"Metric '{self.key}' has no source field paths")
        object.__setattr__(self, "source_field_paths", tuple(self.source_field_paths))
        object.__setattr__(self, "parsed_paths", tuple(parse_path(p) for p in self.source_field_paths))

    def describe(self) -> dict:
        """Return the public ``{name, unit, category}`` view of this mapping."""
        return {"name": self.canonical_name, "unit": self.unit, "category": self.category}


@dataclass(frozen=True)
class NormalizedMetricRecord:
    """A single metric extracted from a provider payload."""

    metric_key: str
    name: str
    unit: str
    category: str
    value: Optional[Number]
