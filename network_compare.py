# Packages
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from network_shapley import EngineConfig, ShapleyValue, compute
from network_topology import ShapleyInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperatorDelta:
    operator: str
    baseline_value: float
    modified_value: float
    value_delta: float
    baseline_proportion: float
    modified_proportion: float
    proportion_delta: float


@dataclass(frozen=True)
class CompareResult:
    baseline_results: List[ShapleyValue]
    modified_results: List[ShapleyValue]
    deltas: List[OperatorDelta]
    baseline_total: float
    modified_total: float


def compare(
    baseline: ShapleyInput,
    modified: ShapleyInput,
    config: Optional[EngineConfig] = None,
) -> CompareResult:
    """
    Run the engine on a baseline and a modified network and report per-operator changes

    Operators present in only one of the runs count as zero value on the other side. Deltas are
    listed in sorted operator order.
    """
    base = compute(baseline, config)
    mod = compute(modified, config)

    missing = ShapleyValue("", 0.0, 0.0)
    deltas: List[OperatorDelta] = []
    for op in sorted(set(base) | set(mod)):
        b, m = base.get(op, missing), mod.get(op, missing)
        deltas.append(OperatorDelta(
            operator=op,
            baseline_value=b.value,
            modified_value=m.value,
            value_delta=m.value - b.value,
            baseline_proportion=b.proportion,
            modified_proportion=m.proportion,
            proportion_delta=m.proportion - b.proportion,
        ))
    logger.debug("Compared %d baseline and %d modified operators", len(base), len(mod))

    return CompareResult(
        baseline_results=list(base.values()),
        modified_results=list(mod.values()),
        deltas=deltas,
        baseline_total=math.fsum(v.value for v in base.values()),
        modified_total=math.fsum(v.value for v in mod.values()),
    )
