# Packages
from __future__ import annotations
import logging
import math
import multiprocessing
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np
import pandas as pd
from numpy.typing import NDArray

from network_errors import ComputationOverflowError, NumericError
from network_topology import OperatorUptime, ShapleyInput, TopologyModel
from network_valuation import CoalitionValuator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """
    Tuning knobs for one computation

    Attributes
    ----------
    max_operators : int
        Largest operator count enumerated exhaustively; 2^max_operators coalitions are valued
    workers : int
        Processes used to value coalitions (1 = serial)
    min_parallel_operators : int
        Below this operator count coalitions are valued serially even when workers > 1
    tolerance : float
        Relative tolerance of the efficiency self-check
    """
    max_operators: int = 20
    workers: int = 1
    min_parallel_operators: int = 8
    tolerance: float = 1e-9


@dataclass(frozen=True)
class ShapleyValue:
    operator: str
    value: float
    proportion: float

# Helper utilities
def _sizes(n_bits: int) -> NDArray:
    # population count of every mask in [0, 2^n_bits)
    masks = np.arange(2**n_bits, dtype=np.int64)
    size = np.zeros(2**n_bits, dtype=np.int64)
    for k in range(n_bits):
        size += (masks >> k) & 1
    return size

def _weights(n_ops: int) -> NDArray:
    # weight[s] = s! (n - s - 1)! / n! for a coalition of size s that excludes the operator
    fact_n = math.factorial(n_ops)
    return np.array([math.factorial(s) * math.factorial(n_ops - s - 1) / fact_n for s in range(n_ops)])

def _value_range(args: Tuple[CoalitionValuator, int, int]) -> NDArray:
    # pool worker: worth of every mask in [start, stop)
    valuator, start, stop = args
    return np.array([valuator.value_mask(mask) for mask in range(start, stop)], dtype=float)


class CoalitionCache:
    """Worth of every coalition of one run, indexed by bitmask."""

    def __init__(self, n_operators: int) -> None:
        self.n_operators = n_operators
        self.size = 1 << n_operators
        self.values = np.zeros(self.size, dtype=float)
        self.filled = np.zeros(self.size, dtype=bool)

    def __contains__(self, mask: int) -> bool:
        return bool(self.filled[mask])

    def get(self, mask: int, valuator: CoalitionValuator) -> float:
        if not self.filled[mask]:
            self.values[mask] = valuator.value_mask(mask)
            self.filled[mask] = True
        return float(self.values[mask])

    def store(self, start: int, values: NDArray) -> None:
        # recomputed entries are identical, so overwriting is harmless
        self.values[start:start + len(values)] = values
        self.filled[start:start + len(values)] = True

    def complete(self) -> bool:
        return bool(self.filled.all())


class ShapleyAllocator:
    """
    Exact Shapley values over every subset of the operators

    Parameters
    ----------
    operators : Sequence[str]
        Players in output order; bit k of a coalition mask stands for operators[k]
    valuator : CoalitionValuator
        Worth function; valued once per coalition
    config : EngineConfig, optional
        Enumeration bound and parallelism
    """

    def __init__(
        self,
        operators: Sequence[str],
        valuator: CoalitionValuator,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.operators = tuple(operators)
        self.valuator = valuator
        self.config = config or EngineConfig()

    @property
    def n_operators(self) -> int:
        return len(self.operators)

    def check_bound(self) -> None:
        if self.n_operators > self.config.max_operators:
            raise ComputationOverflowError(self.n_operators, self.config.max_operators)

    def allocate(self) -> Dict[str, float]:
        self.check_bound()
        if self.n_operators == 0:
            return {}

        cache = CoalitionCache(self.n_operators)
        self._populate(cache)
        return self._accumulate(cache)

    def _populate(self, cache: CoalitionCache) -> None:
        n_ops, workers = self.n_operators, self.config.workers
        t0 = time.perf_counter()
        if workers > 1 and n_ops >= self.config.min_parallel_operators:
            # Contiguous mask ranges, written back in order once every worker is done
            n_chunks = min(cache.size, workers * 4)
            bounds = np.linspace(0, cache.size, n_chunks + 1).astype(int)
            tasks = [(self.valuator, int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]
            logger.debug("Valuing %d coalitions in %d chunks on %d processes", cache.size, len(tasks), workers)
            with multiprocessing.Pool(processes=workers) as pool:
                chunks = pool.map(_value_range, tasks)
            for (_, start, _), values in zip(tasks, chunks):
                cache.store(start, values)
        else:
            for mask in range(cache.size):
                cache.get(mask, self.valuator)
        logger.debug("Valued %d coalitions in %.3fs", cache.size, time.perf_counter() - t0)

        bad = np.flatnonzero(~np.isfinite(cache.values))
        if bad.size:
            raise NumericError(f"Coalition {int(bad[0])} has non-finite worth {cache.values[bad[0]]}.")

    def _accumulate(self, cache: CoalitionCache) -> Dict[str, float]:
        n_ops = self.n_operators
        masks = np.arange(cache.size, dtype=np.int64)
        size = _sizes(n_ops)
        weight = _weights(n_ops)

        # Compute per-operator Shapley value by comparing coalitions with/without operator
        shapley = np.zeros(n_ops)
        for k in range(n_ops):
            with_op = masks[((masks >> k) & 1) == 1]
            without_op = with_op - (1 << k)
            shapley[k] = np.sum(weight[size[without_op]] * (cache.values[with_op] - cache.values[without_op]))
        if not np.isfinite(shapley).all():
            raise NumericError("Shapley values are not finite.")

        # Efficiency: the values share out exactly the worth of the grand coalition
        grand = cache.values[-1]
        if not math.isclose(float(shapley.sum()), grand, rel_tol=self.config.tolerance, abs_tol=self.config.tolerance):
            logger.warning("Efficiency drift: sum of values %.12g, grand coalition %.12g", shapley.sum(), grand)

        return {op: float(shapley[k]) for k, op in enumerate(self.operators)}


def normalize(raw: Mapping[str, float]) -> Dict[str, ShapleyValue]:
    """
    Turn raw values into proportions of their total

    A total that is zero, negative or not finite cannot be shared out, so every proportion is 0
    in that case.
    """
    total = math.fsum(raw.values())
    if not math.isfinite(total) or total <= 0:
        if raw:
            logger.warning("Total value %s is not positive; all proportions are set to 0", total)
        return {op: ShapleyValue(op, value, 0.0) for op, value in raw.items()}
    return {op: ShapleyValue(op, value, value / total) for op, value in raw.items()}


def compute(shapley_input: ShapleyInput, config: Optional[EngineConfig] = None) -> Dict[str, ShapleyValue]:
    """
    Compute Shapley values per operator

    Parameters
    ----------
    shapley_input : ShapleyInput
        Devices, links, demands and tuning parameters
    config : EngineConfig, optional
        Enumeration bound and parallelism

    Returns Dict[str, ShapleyValue]
        One entry per operator, in order of first appearance in the private links

    Raises
    ------
    ValidationError
        The topology or parameters are malformed
    ComputationOverflowError
        There are more operators than config.max_operators
    NumericError
        A coalition worth is not finite
    """
    config = config or EngineConfig()
    t0 = time.perf_counter()

    # Validate and index the topology, then check the enumeration cost before valuing anything
    topology = TopologyModel(shapley_input)
    allocator = ShapleyAllocator(topology.operators, CoalitionValuator(topology), config)
    allocator.check_bound()

    result = normalize(allocator.allocate())
    logger.info("Computed Shapley values for %d operators (%d coalitions) in %.3fs",
                topology.n_operators, 2 ** topology.n_operators if topology.n_operators else 0,
                time.perf_counter() - t0)
    return result


def results_frame(result: Mapping[str, ShapleyValue]) -> pd.DataFrame:
    """Tabulate a result as `[Operator, Value, Percent]`."""
    rows: List[ShapleyValue] = list(result.values())
    return pd.DataFrame({
        "Operator": [r.operator for r in rows],
        "Value": np.round([r.value for r in rows], 4),
        "Percent": np.round([r.proportion for r in rows], 4),
    }, columns=["Operator", "Value", "Percent"])


def network_shapley(
    private_links: pd.DataFrame,
    devices: pd.DataFrame,
    demand: pd.DataFrame,
    public_links: Optional[pd.DataFrame] = None,
    operator_uptime: OperatorUptime = 1.0,
    contiguity_bonus: float = 0.0,
    demand_multiplier: float = 1.0,
    config: Optional[EngineConfig] = None,
) -> pd.DataFrame:
    """
    Compute Shapley values per operator from tables

    Parameters
    ----------
    private_links : pandas.DataFrame
        Private link table `[Device1, Device2, Operator, Bandwidth, Latency, (Uptime), (Directed), (Link)]`
    devices : pandas.DataFrame
        Devices table `[Device, (Location)]`
    demand : pandas.DataFrame
        Demand table `[Start, End, Traffic, (Priority)]`
    public_links : pandas.DataFrame, optional
        Public links `[Device1, Device2, Latency, (Bandwidth), (Directed), (Link)]`
    operator_uptime : float or Mapping[str, float]
        Reliability (between 0 - 1) of an operator's links, globally or per operator
    contiguity_bonus : float
        Extra relative value for demands served end to end by one operator
    demand_multiplier: float
        Extra multiplier to scale up demand

    Returns pandas.DataFrame
        Value and percent of value ascribed to each operator in simulation
    """
    shapley_input = ShapleyInput.from_frames(private_links, devices, demand, public_links,
                                             operator_uptime, contiguity_bonus, demand_multiplier)
    return results_frame(compute(shapley_input, config))
