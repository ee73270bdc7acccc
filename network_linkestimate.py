# Packages
from __future__ import annotations
import dataclasses
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
import pandas as pd

from network_shapley import EngineConfig, compute
from network_topology import OTHERS, PrivateLink, ShapleyInput, _assert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkValue:
    device1: str
    device2: str
    bandwidth: float
    latency: float
    value: float
    percent: float


def retag_links(
    private_links: List[PrivateLink],
    operator_focus: str,
) -> Tuple[List[PrivateLink], List[List[int]]]:
    """
    Retags operators so that the methodology performs link-by-link calculations

    Parameters
    ----------
    private_links : List[PrivateLink]
        Private links of the full network
    operator_focus : str
        Operator name to focus on, in computing value of individual links

    Returns (List[PrivateLink], List[List[int]])
        The links with every physical focus link owned by its own pseudo-operator and every other link
        owned by Others, and the link positions that make up each physical focus link (in tag order)
    """

    # Collapse non-focus links into a general private category
    links = [link if link.operator == operator_focus else dataclasses.replace(link, operator=OTHERS)
             for link in private_links]

    # Iterate through focus links; a directed link and its reverse twin (same bandwidth and latency) are one
    # physical link
    groups: List[List[int]] = []
    tagged = set()
    for i, link in enumerate(links):
        if link.operator != operator_focus or i in tagged:
            continue
        group = [i]
        if link.directed:
            for j in range(i + 1, len(links)):
                twin = links[j]
                if (j not in tagged and twin.operator == operator_focus and twin.directed and
                        twin.device1 == link.device2 and twin.device2 == link.device1 and
                        twin.bandwidth == link.bandwidth and twin.latency == link.latency):
                    group.append(j)
                    break
        tagged.update(group)
        groups.append(group)

    for counter, group in enumerate(groups, start=1):
        for i in group:
            links[i] = dataclasses.replace(links[i], operator=f"{operator_focus}#{counter}")
    return links, groups


def _leave_one_out(
    shapley_input: ShapleyInput,
    operator_focus: str,
    groups: List[List[int]],
    config: EngineConfig,
) -> List[float]:
    # value of a link = drop in the focus operator's value when that link is removed
    def focus_value(inp: ShapleyInput) -> float:
        result = compute(inp, config)
        return result[operator_focus].value if operator_focus in result else 0.0

    baseline = focus_value(shapley_input)
    values = []
    for group in groups:
        drop = set(group)
        reduced = dataclasses.replace(
            shapley_input,
            private_links=[link for i, link in enumerate(shapley_input.private_links) if i not in drop],
        )
        values.append(max(baseline - focus_value(reduced), 0.0))
    return values


def link_estimate(
    shapley_input: ShapleyInput,
    operator_focus: str,
    config: Optional[EngineConfig] = None,
) -> List[LinkValue]:
    """
    Compute Shapley values per link of one operator

    Every physical link of `operator_focus` becomes its own player and all other operators act as a
    single Others player, with operator_uptime fixed to 1. When that game has more players than
    config.max_operators, each link is valued by leave-one-out instead.
    """
    config = config or EngineConfig()
    private_links = list(shapley_input.private_links)
    _assert(operator_focus != OTHERS, f"{OTHERS} is a protected keyword and cannot be the focus operator.",
            operator_focus)
    _assert(any(link.operator == operator_focus for link in private_links),
            f"Operator {operator_focus} owns no private links.", operator_focus)

    # Link values are measured on undegraded operators in both branches
    shapley_input = dataclasses.replace(shapley_input, operator_uptime=1.0)
    links, groups = retag_links(private_links, operator_focus)
    n_players = len(groups) + any(link.operator == OTHERS for link in links)
    if n_players > config.max_operators:
        logger.warning("%s has %d links (%d players); falling back to leave-one-out estimates",
                       operator_focus, len(groups), n_players)
        values = _leave_one_out(shapley_input, operator_focus, groups, config)
    else:
        result = compute(dataclasses.replace(shapley_input, private_links=links), config)
        values = [result[links[group[0]].operator].value for group in groups]

    # Cast into percentages over positive values
    positive = sum(max(v, 0.0) for v in values)
    out = []
    for group, value in zip(groups, values):
        link = private_links[group[0]]
        out.append(LinkValue(
            device1=link.device1,
            device2=link.device2,
            bandwidth=float(link.bandwidth),
            latency=float(link.latency),
            value=value,
            percent=max(value, 0.0) / positive if positive > 0 else 0.0,
        ))
    return out


def network_linkestimate(
    private_links: pd.DataFrame,
    devices: pd.DataFrame,
    demand: pd.DataFrame,
    public_links: Optional[pd.DataFrame],
    operator_focus: str,
    contiguity_bonus: float = 0.0,
    demand_multiplier: float = 1.0,
    config: Optional[EngineConfig] = None,
) -> pd.DataFrame:
    """
    Compute Shapley values per link of one operator from tables

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
    operator_focus : str
        Operator name to focus on, in computing value of individual links
    contiguity_bonus : float
        Extra relative value for demands served end to end by one operator
    demand_multiplier: float
        Extra multiplier to scale up demand

    Returns pandas.DataFrame
        Value and percent of value estimated for each link `[Device1, Device2, Bandwidth, Latency, Value, Percent]`
    """
    shapley_input = ShapleyInput.from_frames(private_links, devices, demand, public_links,
                                             1.0, contiguity_bonus, demand_multiplier)
    rows = link_estimate(shapley_input, operator_focus, config)
    return pd.DataFrame({
        "Device1": [r.device1 for r in rows],
        "Device2": [r.device2 for r in rows],
        "Bandwidth": [r.bandwidth for r in rows],
        "Latency": [r.latency for r in rows],
        "Value": [r.value for r in rows],
        "Percent": [r.percent for r in rows],
    }, columns=["Device1", "Device2", "Bandwidth", "Latency", "Value", "Percent"])
