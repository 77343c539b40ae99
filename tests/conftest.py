from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from aquadash.metrics.registry import MetricRegistry
from aquadash.metrics.water import DEFAULT_METRICS


def make_reading(
    timestamp: Optional[str],
    ph: Any = 7.3,
    turbidity: Any = 1.0,
    **extra: Any,
) -> Dict[str, Any]:
    reading: Dict[str, Any] = {"PH": ph, "turbidez": turbidity}
    if timestamp is not None:
        reading["timestamp"] = timestamp
    reading.update(extra)
    return reading


def make_series(count: int, start: datetime = datetime(2024, 1, 1, 8, 0, 0)) -> List[Dict[str, Any]]:
    """``count`` readings one minute apart, pH value equal to the index."""
    return [
        make_reading((start + timedelta(minutes=i)).strftime("%d/%m/%Y, %H:%M:%S"), ph=i, index=i)
        for i in range(count)
    ]


@pytest.fixture
def registry() -> MetricRegistry:
    return MetricRegistry(DEFAULT_METRICS)
