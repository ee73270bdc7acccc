"""
A minimal, self-contained demonstration of the network_shapley() function.

Run from the repo root with:
    python example_run.py
"""

from __future__ import annotations
import pandas as pd

from network_linkestimate import network_linkestimate
from network_shapley import network_shapley


def build_sample_inputs() -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Return small private_links, devices, public_links, demand DataFrames."""
    private_links = pd.DataFrame(
        {
            "Device1":   ["SIN1", "FRA1", "FRA1", "AMS1"],
            "Device2":   ["FRA1", "AMS1", "LON1", "LON1"],
            "Operator":  ["Alpha", "Alpha", "Beta", "Beta"],
            "Latency":   [50, 3, 5, 4],
            "Bandwidth": [10, 10, 10, 8],
            "Uptime":    [1, 1, 1, 0.99],
        }
    )

    devices = pd.DataFrame(
        {
            "Device":   ["SIN1", "FRA1", "AMS1", "LON1"],
            "Location": ["SIN", "FRA", "AMS", "LON"],
        }
    )

    public_links = pd.DataFrame(
        {
            "Device1":   ["SIN1", "SIN1", "FRA1", "FRA1"],
            "Device2":   ["FRA1", "AMS1", "LON1", "AMS1"],
            "Latency":   [100, 102, 7, 5],
            "Bandwidth": [2, 2, 5, 5],
        }
    )

    demand = pd.DataFrame(
        {
            "Start":    ["SIN1", "SIN1", "AMS1", "AMS1"],
            "End":      ["AMS1", "LON1", "LON1", "FRA1"],
            "Traffic":  [1, 5, 6, 3],
            "Priority": [1, 2, 1, 1],
        }
    )

    return private_links, devices, public_links, demand


def main() -> None:
    private_links, devices, public_links, demand = build_sample_inputs()

    result = network_shapley(
        private_links=private_links,
        devices=devices,
        demand=demand,
        public_links=public_links,
        operator_uptime=0.98,
        contiguity_bonus=0.5,
        demand_multiplier=1.0,
    )

    print("\nShapley results:\n")
    print(result.to_string(index=False))

    links = network_linkestimate(private_links, devices, demand, public_links, operator_focus="Alpha",
                                 contiguity_bonus=0.5)
    print("\nLink estimate for Alpha:\n")
    print(links.to_string(index=False))


if __name__ == "__main__":
    main()
