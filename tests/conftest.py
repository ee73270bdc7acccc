"""Shared fixtures for the network Shapley test suite."""
import numpy as np
import pytest

from network_topology import Demand, Device, PrivateLink, PublicLink, ShapleyInput


def _devices(*names):
    return [Device(name) for name in names]


@pytest.fixture
def single_operator():
    """One operator owns the only link on the only path for a demand of 7."""
    return ShapleyInput(
        devices=_devices("A", "B"),
        private_links=[PrivateLink("A", "B", "Alpha", bandwidth=10.0, latency=5.0)],
        demands=[Demand("A", "B", traffic=7.0)],
    )


@pytest.fixture
def twin_operators():
    """Two operators with disjoint, identical links serving the same demand."""
    return ShapleyInput(
        devices=_devices("A", "B"),
        private_links=[
            PrivateLink("A", "B", "Alpha", bandwidth=10.0, latency=5.0),
            PrivateLink("A", "B", "Beta", bandwidth=10.0, latency=5.0),
        ],
        demands=[Demand("A", "B", traffic=6.0)],
    )


@pytest.fixture
def glove_network():
    """Alpha and Beta are interchangeable first hops; Gamma owns the only second hop."""
    return ShapleyInput(
        devices=_devices("A", "B", "C"),
        private_links=[
            PrivateLink("A", "B", "Alpha", bandwidth=10.0, latency=5.0),
            PrivateLink("A", "B", "Beta", bandwidth=10.0, latency=5.0),
            PrivateLink("B", "C", "Gamma", bandwidth=10.0, latency=5.0),
        ],
        demands=[Demand("A", "C", traffic=5.0)],
    )


@pytest.fixture
def random_network():
    """Factory for reproducible mixed public/private networks."""
    def build(seed=7, n_ops=4, n_devices=6, n_links=10, n_demands=5, contiguity_bonus=0.5, operator_uptime=0.9):
        rng = np.random.default_rng(seed)
        ops = [f"Op{k}" for k in range(n_ops)]
        private = []
        for i in range(n_links):
            a, b = rng.choice(n_devices, size=2, replace=False)
            private.append(PrivateLink(f"D{a}", f"D{b}", ops[i % n_ops],
                                       bandwidth=float(rng.integers(1, 10)),
                                       latency=float(rng.integers(1, 20)),
                                       directed=bool(rng.integers(0, 2))))
        public = [PublicLink("D0", f"D{i}", latency=100.0, bandwidth=1.0) for i in range(1, n_devices)]
        demands = []
        for _ in range(n_demands):
            a, b = rng.choice(n_devices, size=2, replace=False)
            demands.append(Demand(f"D{a}", f"D{b}", traffic=float(rng.integers(1, 8)),
                                  priority=float(rng.integers(1, 3))))
        return ShapleyInput(
            devices=_devices(*[f"D{i}" for i in range(n_devices)]),
            private_links=private,
            public_links=public,
            demands=demands,
            operator_uptime=operator_uptime,
            contiguity_bonus=contiguity_bonus,
            demand_multiplier=1.5,
        )
    return build
