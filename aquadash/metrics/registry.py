from collections import OrderedDict
from dataclasses import replace
from typing import Iterable, List, Mapping, Sequence

from .base import MetricDefinition


class MetricRegistry:
    """Registry holding the metric descriptor table."""

    def __init__(self, definitions: Iterable[MetricDefinition] = ()) -> None:
        self._definitions: "OrderedDict[str, MetricDefinition]" = OrderedDict()
        for definition in definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition) -> None:
        if definition.id in self._definitions:
            raise ValueError(f"Metric '{definition.id}' is already registered.")
        self._definitions[definition.id] = definition

    def all(self) -> Iterable[MetricDefinition]:
        return self._definitions.values()

    def keys(self) -> List[str]:
        return list(self._definitions)

    def get(self, metric_id: str) -> MetricDefinition:
        if metric_id not in self._definitions:
            raise KeyError(f"Metric '{metric_id}' is not registered.")
        return self._definitions[metric_id]

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._definitions

    def with_field_overrides(
        self, overrides: Mapping[str, Sequence[str]]
    ) -> "MetricRegistry":
        for metric_id in overrides:
            self.get(metric_id)
        return MetricRegistry(
            replace(definition, field_names=tuple(overrides[definition.id]))
            if definition.id in overrides
            else definition
            for definition in self.all()
        )
