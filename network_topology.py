# Packages
from __future__ import annotations
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import breadth_first_order

from network_errors import ValidationError

logger = logging.getLogger(__name__)

# Reserved pseudo-operator names
PUBLIC = "Public"
OTHERS = "Others"

OperatorUptime = Union[float, Mapping[str, float]]

# Helper utilities
def _assert(cond: bool, msg: str, identifier: Optional[str] = None) -> None:
    if not cond:
        raise ValidationError(msg, identifier)

def _number(value: Any, what: str, identifier: str, optional: bool = False) -> Optional[float]:
    # coerce to a finite, non-negative float (or None when optional and missing)
    if value is None and optional:
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} of {identifier} is not a number: {value!r}.", identifier) from None
    _assert(math.isfinite(x), f"{what} of {identifier} must be finite.", identifier)
    _assert(x >= 0, f"{what} of {identifier} must be non-negative.", identifier)
    return x

def _fraction(value: Any, what: str, identifier: str) -> float:
    x = _number(value, what, identifier)
    _assert(x <= 1, f"{what} of {identifier} must lie between 0 and 1.", identifier)
    return x

def _frame_get(row: pd.Series, column: str, default: Any = None) -> Any:
    if column not in row.index:
        return default
    value = row[column]
    return default if pd.isna(value) else value

_TRUE = {"true", "t", "yes", "y", "1"}
_FALSE = {"false", "f", "no", "n", "0"}

def _flag(value: Any, what: str, identifier: str) -> bool:
    # strings are matched case-insensitively against common true/false spellings
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE or text in _FALSE:
            return text in _TRUE
    elif isinstance(value, (int, float, np.integer, np.floating)) and value in (0, 1):
        return bool(value)
    raise ValidationError(f"{what} of {identifier} is not a boolean: {value!r}.", identifier)


@dataclass(frozen=True)
class Device:
    device: str
    location: Optional[str] = None


@dataclass(frozen=True)
class PrivateLink:
    device1: str
    device2: str
    operator: str
    bandwidth: float
    latency: float
    uptime: float = 1.0
    directed: bool = False
    link_id: Optional[str] = None


@dataclass(frozen=True)
class PublicLink:
    device1: str
    device2: str
    latency: float
    bandwidth: Optional[float] = None
    directed: bool = False
    link_id: Optional[str] = None


@dataclass(frozen=True)
class Demand:
    start: str
    end: str
    traffic: float
    priority: float = 1.0


@dataclass(frozen=True)
class ShapleyInput:
    """
    Full input to one Shapley computation.

    Attributes
    ----------
    devices : Sequence[Device]
        Network nodes
    private_links : Sequence[PrivateLink]
        Operator-owned links; the operators found here are the players of the game
    public_links : Sequence[PublicLink]
        Links that are available to every coalition
    demands : Sequence[Demand]
        Point-to-point traffic requirements
    operator_uptime : float or Mapping[str, float]
        Expected availability of private links, globally or per operator (missing operators use 1.0)
    contiguity_bonus : float
        Extra relative value for a demand served end to end by a single operator
    demand_multiplier : float
        Scales satisfied traffic into value units
    """
    devices: Sequence[Device]
    private_links: Sequence[PrivateLink]
    public_links: Sequence[PublicLink] = ()
    demands: Sequence[Demand] = ()
    operator_uptime: OperatorUptime = 1.0
    contiguity_bonus: float = 0.0
    demand_multiplier: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ShapleyInput":
        """Build an input from the JSON-shaped mapping used by the command line tool."""
        try:
            devices = [Device(device=str(d["device"]), location=d.get("location")) for d in data.get("devices", [])]
            private_links = [
                PrivateLink(device1=str(r["device1"]), device2=str(r["device2"]), operator=r["operator"],
                            bandwidth=r["bandwidth"], latency=r["latency"], uptime=r.get("uptime", 1.0),
                            directed=_flag(r.get("directed", False), "directed", str(r["device1"])),
                            link_id=r.get("link_id"))
                for r in data.get("private_links", [])
            ]
            public_links = [
                PublicLink(device1=str(r["device1"]), device2=str(r["device2"]), latency=r["latency"],
                           bandwidth=r.get("bandwidth"),
                           directed=_flag(r.get("directed", False), "directed", str(r["device1"])),
                           link_id=r.get("link_id"))
                for r in data.get("public_links", [])
            ]
            demands = [
                Demand(start=str(r["start"]), end=str(r["end"]), traffic=r["traffic"],
                       priority=r.get("priority", 1.0))
                for r in data.get("demands", [])
            ]
        except KeyError as exc:
            raise ValidationError(f"Missing field {exc.args[0]!r} in input.", str(exc.args[0])) from None
        except (TypeError, AttributeError) as exc:
            raise ValidationError(f"Malformed input record: {exc}.") from None
        uptime = data.get("operator_uptime", 1.0)
        if isinstance(uptime, Mapping):
            uptime = dict(uptime)
        return cls(
            devices=devices,
            private_links=private_links,
            public_links=public_links,
            demands=demands,
            operator_uptime=uptime,
            contiguity_bonus=data.get("contiguity_bonus", 0.0),
            demand_multiplier=data.get("demand_multiplier", 1.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        uptime = self.operator_uptime
        return dict(
            devices=[dataclasses.asdict(d) for d in self.devices],
            private_links=[dataclasses.asdict(link) for link in self.private_links],
            public_links=[dataclasses.asdict(link) for link in self.public_links],
            demands=[dataclasses.asdict(d) for d in self.demands],
            operator_uptime=dict(uptime) if isinstance(uptime, Mapping) else uptime,
            contiguity_bonus=self.contiguity_bonus,
            demand_multiplier=self.demand_multiplier,
        )

    @classmethod
    def from_frames(
        cls,
        private_links: pd.DataFrame,
        devices: pd.DataFrame,
        demand: pd.DataFrame,
        public_links: Optional[pd.DataFrame] = None,
        operator_uptime: OperatorUptime = 1.0,
        contiguity_bonus: float = 0.0,
        demand_multiplier: float = 1.0,
    ) -> "ShapleyInput":
        """
        Build an input from tables

        Parameters
        ----------
        private_links : pandas.DataFrame
            Private link table `[Device1, Device2, Operator, Bandwidth, Latency, (Uptime), (Directed), (Link)]`
        devices : pandas.DataFrame
            Device table `[Device, (Location)]`
        demand : pandas.DataFrame
            Demand table `[Start, End, Traffic, (Priority)]`
        public_links : pandas.DataFrame, optional
            Public link table `[Device1, Device2, Latency, (Bandwidth), (Directed), (Link)]`

        Returns ShapleyInput
            A typed input; columns in parentheses are optional and take defaults when missing or NA
        """
        for name, frame, required in (
            ("devices", devices, ["Device"]),
            ("private_links", private_links, ["Device1", "Device2", "Operator", "Bandwidth", "Latency"]),
            ("demand", demand, ["Start", "End", "Traffic"]),
            ("public_links", public_links, ["Device1", "Device2", "Latency"]),
        ):
            if frame is None:
                continue
            missing = [c for c in required if c not in frame.columns]
            _assert(not missing, f"Table {name} is missing columns {missing}.", name)

        device_rows = [Device(device=str(r["Device"]), location=_frame_get(r, "Location"))
                       for _, r in devices.iterrows()]
        private_rows = [
            PrivateLink(device1=str(r["Device1"]), device2=str(r["Device2"]), operator=_frame_get(r, "Operator"),
                        bandwidth=r["Bandwidth"], latency=r["Latency"], uptime=_frame_get(r, "Uptime", 1.0),
                        directed=_flag(_frame_get(r, "Directed", False), "Directed", str(r["Device1"])),
                        link_id=_frame_get(r, "Link"))
            for _, r in private_links.iterrows()
        ]
        public_rows = []
        if public_links is not None:
            public_rows = [
                PublicLink(device1=str(r["Device1"]), device2=str(r["Device2"]), latency=r["Latency"],
                           bandwidth=_frame_get(r, "Bandwidth"),
                           directed=_flag(_frame_get(r, "Directed", False), "Directed", str(r["Device1"])),
                           link_id=_frame_get(r, "Link"))
                for _, r in public_links.iterrows()
            ]
        demand_rows = [Demand(start=str(r["Start"]), end=str(r["End"]), traffic=r["Traffic"],
                              priority=_frame_get(r, "Priority", 1.0))
                       for _, r in demand.iterrows()]
        return cls(
            devices=device_rows,
            private_links=private_rows,
            public_links=public_rows,
            demands=demand_rows,
            operator_uptime=operator_uptime,
            contiguity_bonus=contiguity_bonus,
            demand_multiplier=demand_multiplier,
        )


@dataclass(frozen=True)
class Arc:
    """One traversable direction of a link."""
    tail: int
    head: int
    link: int


@dataclass
class TopologyModel:
    """
    Validated, indexed view of a ShapleyInput.

    Construction raises ValidationError on the first failed check; a built model is read-only and
    is shared by every coalition valuation of a run.
    """
    shapley_input: ShapleyInput
    devices: Tuple[str, ...] = field(init=False)
    operators: Tuple[str, ...] = field(init=False)
    link_keys: List[str] = field(init=False)
    link_operator: List[int] = field(init=False)
    link_capacity: List[float] = field(init=False)
    link_latency: List[float] = field(init=False)
    arcs: List[Arc] = field(init=False)
    demand_endpoints: List[Tuple[int, int]] = field(init=False)
    demand_traffic: List[float] = field(init=False)
    demand_priority: List[float] = field(init=False)
    demand_arcs: List[Tuple[Arc, ...]] = field(init=False)
    demand_operator_mask: List[int] = field(init=False)

    def __post_init__(self) -> None:
        self._check_parameters()
        self._index_devices()
        self._index_links()
        self._index_demands()
        logger.debug("Topology indexed: %d devices, %d links, %d arcs, %d demands, %d operators",
                     len(self.devices), len(self.link_keys), len(self.arcs), len(self.demand_arcs),
                     len(self.operators))

    @property
    def n_operators(self) -> int:
        return len(self.operators)

    def _check_parameters(self) -> None:
        src = self.shapley_input
        _number(src.contiguity_bonus, "contiguity_bonus", "input")
        _number(src.demand_multiplier, "demand_multiplier", "input")
        if not isinstance(src.operator_uptime, Mapping):
            _fraction(src.operator_uptime, "operator_uptime", "input")

    def _index_devices(self) -> None:
        ids: List[str] = []
        for d in self.shapley_input.devices:
            _assert(isinstance(d.device, str) and d.device.strip() != "", "Device identifiers must be non-empty.",
                    str(d.device))
            ids.append(d.device)
        seen = set()
        for d in ids:
            _assert(d not in seen, f"Device {d} is duplicated in the device list.", d)
            seen.add(d)
        self.devices = tuple(ids)
        self._device_index = {d: i for i, d in enumerate(ids)}

    def _endpoint(self, device: str, owner: str) -> int:
        _assert(device in self._device_index, f"{owner} references unknown device {device}.", device)
        return self._device_index[device]

    def _index_links(self) -> None:
        # Enumerate operators by first appearance in the private link list
        operators: List[str] = []
        for link in self.shapley_input.private_links:
            op = link.operator
            _assert(isinstance(op, str) and op != "" and op == op.strip(),
                    f"Operator identifier {op!r} is empty or malformed.", str(op))
            _assert(op != PUBLIC, f"{PUBLIC} is a protected keyword for operator names; choose another.", op)
            if op not in operators:
                operators.append(op)
        self.operators = tuple(operators)
        self._operator_index = {op: i for i, op in enumerate(operators)}

        # Resolve per-operator uptime
        uptime = self.shapley_input.operator_uptime
        if isinstance(uptime, Mapping):
            for op, value in uptime.items():
                _assert(op in self._operator_index, f"operator_uptime names unknown operator {op}.", str(op))
                _fraction(value, "operator_uptime", op)
            self._uptime = [float(uptime.get(op, 1.0)) for op in operators]
        else:
            self._uptime = [float(uptime)] * len(operators)

        self.link_keys, self.link_operator, self.link_capacity, self.link_latency = [], [], [], []
        self.arcs = []
        for i, link in enumerate(self.shapley_input.private_links):
            key = str(link.link_id) if link.link_id is not None else f"{link.operator}:{link.device1}-{link.device2}:{i}"
            op = self._operator_index[link.operator]
            bandwidth = _number(link.bandwidth, "Bandwidth", key)
            derate = _fraction(link.uptime, "Uptime", key) * self._uptime[op]
            self._add_link(key, op, link.device1, link.device2, bandwidth * derate,
                           _number(link.latency, "Latency", key), _flag(link.directed, "Directed", key))
        for i, link in enumerate(self.shapley_input.public_links):
            key = str(link.link_id) if link.link_id is not None else f"public:{link.device1}-{link.device2}:{i}"
            bandwidth = _number(link.bandwidth, "Bandwidth", key, optional=True)
            self._add_link(key, -1, link.device1, link.device2, math.inf if bandwidth is None else bandwidth,
                           _number(link.latency, "Latency", key), _flag(link.directed, "Directed", key))

        seen = set()
        for key in self.link_keys:
            _assert(key not in seen, f"Link identifier {key} is duplicated.", key)
            seen.add(key)

    def _add_link(self, key: str, op: int, device1: str, device2: str, capacity: float, latency: float,
                  directed: bool) -> None:
        tail = self._endpoint(device1, f"Link {key}")
        head = self._endpoint(device2, f"Link {key}")
        _assert(tail != head, f"Link {key} connects device {device1} to itself.", key)
        idx = len(self.link_keys)
        self.link_keys.append(str(key))
        self.link_operator.append(op)
        self.link_capacity.append(capacity)
        self.link_latency.append(latency)
        self.arcs.append(Arc(tail, head, idx))
        if not directed:
            self.arcs.append(Arc(head, tail, idx))

    def _index_demands(self) -> None:
        self.demand_endpoints, self.demand_traffic, self.demand_priority = [], [], []
        self.demand_arcs, self.demand_operator_mask = [], []
        if not self.shapley_input.demands:
            return

        n = len(self.devices)
        tails = np.array([a.tail for a in self.arcs], dtype=np.int64)
        heads = np.array([a.head for a in self.arcs], dtype=np.int64)
        graph = csr_matrix((np.ones(len(self.arcs)), (tails, heads)), shape=(n, n))
        reverse = graph.transpose().tocsr()

        # Arcs on some start -> end walk: tail reachable from start and end reachable from head
        forward: Dict[int, NDArray[np.bool_]] = {}
        backward: Dict[int, NDArray[np.bool_]] = {}
        for k, d in enumerate(self.shapley_input.demands):
            name = f"Demand {k} ({d.start} -> {d.end})"
            start = self._endpoint(d.start, name)
            end = self._endpoint(d.end, name)
            _assert(start != end, f"{name} starts and ends at the same device.", d.start)
            self.demand_endpoints.append((start, end))
            self.demand_traffic.append(_number(d.traffic, "Traffic", name))
            self.demand_priority.append(_number(d.priority, "Priority", name))

            if start not in forward:
                forward[start] = _reached(graph, start)
            if end not in backward:
                backward[end] = _reached(reverse, end)
            keep = np.flatnonzero(forward[start][tails] & backward[end][heads])
            arcs = tuple(self.arcs[i] for i in keep)
            mask = 0
            for a in arcs:
                if self.link_operator[a.link] >= 0:
                    mask |= 1 << self.link_operator[a.link]
            self.demand_arcs.append(arcs)
            self.demand_operator_mask.append(mask)

    def operator_mask(self, operators: Iterable[str]) -> int:
        """Translate operator names into a coalition bitmask."""
        mask = 0
        for op in operators:
            _assert(op in self._operator_index, f"Unknown operator {op}.", str(op))
            mask |= 1 << self._operator_index[op]
        return mask

    def mask_operators(self, mask: int) -> Tuple[str, ...]:
        return tuple(op for i, op in enumerate(self.operators) if mask >> i & 1)


def _reached(graph: csr_matrix, source: int) -> NDArray:
    order = breadth_first_order(graph, source, directed=True, return_predecessors=False)
    flags = np.zeros(graph.shape[0], dtype=bool)
    flags[order] = True
    return flags


def collapse_small_operators(
    shapley_input: ShapleyInput,
    threshold: int,
    keep: Iterable[str] = (),
) -> ShapleyInput:
    """
    Merge operators owning fewer than `threshold` private links into a single Others operator

    Parameters
    ----------
    shapley_input : ShapleyInput
        Input to reduce; it is not modified
    threshold : int
        Minimum private link count an operator needs to remain a separate player
    keep : Iterable[str]
        Operators that stay separate players regardless of their link count

    Returns ShapleyInput
        A new input with fewer players (the same object when nothing is collapsed)
    """

    # Count private links per operator
    counts: Dict[str, int] = {}
    for link in shapley_input.private_links:
        counts[link.operator] = counts.get(link.operator, 0) + 1
    keep = set(keep)
    small = {op for op, c in counts.items() if c < threshold and op not in keep}
    if not small:
        return shapley_input

    links = [dataclasses.replace(link, operator=OTHERS) if link.operator in small else link
             for link in shapley_input.private_links]

    # Merged operators keep the weakest uptime among them
    uptime = shapley_input.operator_uptime
    if isinstance(uptime, Mapping):
        merged = small | ({OTHERS} if OTHERS in counts else set())
        uptime = {op: v for op, v in uptime.items() if op not in merged}
        uptime[OTHERS] = min(float(shapley_input.operator_uptime.get(op, 1.0)) for op in merged)

    logger.info("Collapsed %d operators with fewer than %d links into %s", len(small), threshold, OTHERS)
    return dataclasses.replace(shapley_input, private_links=links, operator_uptime=uptime)
