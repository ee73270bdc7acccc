"""Exact Shapley allocation, normalization and the public entry points."""
import math

import numpy as np
import pandas as pd
import pytest

import network_valuation
from network_errors import ComputationOverflowError, NumericError
from network_shapley import (
    CoalitionCache,
    EngineConfig,
    ShapleyAllocator,
    ShapleyValue,
    compute,
    network_shapley,
    normalize,
    results_frame,
)
from network_topology import Demand, Device, PrivateLink, PublicLink, ShapleyInput, TopologyModel
from network_valuation import CoalitionValuator


class TableGame:
    """Worth function backed by a plain callable on bitmasks; counts calls."""

    def __init__(self, fn):
        self.fn = fn
        self.calls = []

    def value_mask(self, mask):
        self.calls.append(mask)
        return self.fn(mask)


class TestAllocator:

    def test_additive_game(self):
        weights = [3.0, 5.0, 11.0]
        game = TableGame(lambda m: sum(w for k, w in enumerate(weights) if m >> k & 1))
        raw = ShapleyAllocator(["a", "b", "c"], game).allocate()
        assert raw == pytest.approx({"a": 3.0, "b": 5.0, "c": 11.0})

    def test_glove_game(self):
        # one left glove (a) and two right gloves (b, c)
        game = TableGame(lambda m: 1.0 if m & 1 and m & 0b110 else 0.0)
        raw = ShapleyAllocator(["a", "b", "c"], game).allocate()
        assert raw == pytest.approx({"a": 2 / 3, "b": 1 / 6, "c": 1 / 6})

    def test_each_coalition_valued_once(self):
        game = TableGame(lambda m: float(bin(m).count("1")) ** 2)
        ShapleyAllocator(["a", "b", "c", "d"], game).allocate()
        assert sorted(game.calls) == list(range(16))

    def test_output_order_follows_operators(self):
        game = TableGame(lambda m: float(m))
        raw = ShapleyAllocator(["z", "y", "x"], game).allocate()
        assert list(raw) == ["z", "y", "x"]

    def test_no_operators(self):
        game = TableGame(lambda m: 1.0)
        assert ShapleyAllocator([], game).allocate() == {}
        assert game.calls == []

    def test_overflow_before_any_valuation(self):
        game = TableGame(lambda m: 1.0)
        allocator = ShapleyAllocator([f"op{k}" for k in range(5)], game, EngineConfig(max_operators=4))
        with pytest.raises(ComputationOverflowError) as exc:
            allocator.allocate()
        assert (exc.value.n_operators, exc.value.bound) == (5, 4)
        assert game.calls == []

    def test_non_finite_worth(self):
        game = TableGame(lambda m: math.inf if m == 3 else 0.0)
        with pytest.raises(NumericError):
            ShapleyAllocator(["a", "b"], game).allocate()

    def test_cache(self):
        game = TableGame(lambda m: 2.0 * m)
        cache = CoalitionCache(2)
        assert 1 not in cache
        assert cache.get(1, game) == 2.0
        assert cache.get(1, game) == 2.0
        assert game.calls == [1]
        cache.store(2, np.array([4.0, 6.0]))
        assert 3 in cache
        assert not cache.complete()


class TestNormalize:

    def test_proportions_sum_to_one(self):
        out = normalize({"a": 1.0, "b": 3.0})
        assert out["a"] == ShapleyValue("a", 1.0, 0.25)
        assert sum(v.proportion for v in out.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize("raw", [{"a": 0.0, "b": 0.0}, {"a": -2.0, "b": 1.0}])
    def test_non_positive_total(self, raw):
        out = normalize(raw)
        assert [v.proportion for v in out.values()] == [0.0, 0.0]
        assert [v.value for v in out.values()] == list(raw.values())

    def test_negative_member_keeps_its_sign(self):
        out = normalize({"a": -1.0, "b": 3.0})
        assert out["a"].proportion == pytest.approx(-0.5)
        assert out["b"].proportion == pytest.approx(1.5)

    def test_empty(self):
        assert normalize({}) == {}


class TestScenarios:

    def test_public_only_network(self):
        net = ShapleyInput(
            devices=[Device("A"), Device("B")],
            private_links=[],
            public_links=[PublicLink("A", "B", latency=10.0)],
            demands=[Demand("A", "B", traffic=5.0)],
        )
        assert compute(net) == {}

    def test_sole_operator_takes_everything(self, single_operator):
        result = compute(single_operator)
        assert list(result) == ["Alpha"]
        assert result["Alpha"].value == pytest.approx(7.0)
        assert result["Alpha"].proportion == pytest.approx(1.0)

    def test_twin_operators_split_evenly(self, twin_operators):
        result = compute(twin_operators)
        assert result["Alpha"].value == pytest.approx(3.0)
        assert result["Beta"].value == pytest.approx(3.0)
        assert [v.proportion for v in result.values()] == pytest.approx([0.5, 0.5])

    def test_zero_volume_demand(self, twin_operators):
        net = ShapleyInput(devices=twin_operators.devices, private_links=twin_operators.private_links,
                           demands=[Demand("A", "B", traffic=0.0)], contiguity_bonus=3.0)
        result = compute(net)
        assert [(v.value, v.proportion) for v in result.values()] == [(0.0, 0.0), (0.0, 0.0)]

    def test_operator_bound(self, glove_network):
        with pytest.raises(ComputationOverflowError):
            compute(glove_network, EngineConfig(max_operators=2))

    def test_bound_is_checked_before_valuation(self, glove_network, monkeypatch):
        def boom(self, mask):
            raise AssertionError("valued a coalition")
        monkeypatch.setattr(network_valuation.CoalitionValuator, "value_mask", boom)
        with pytest.raises(ComputationOverflowError):
            compute(glove_network, EngineConfig(max_operators=2))


class TestAxioms:

    @pytest.mark.parametrize("seed", [5, 6, 7])
    def test_efficiency(self, random_network, seed):
        net = random_network(seed=seed)
        result = compute(net)
        topo = TopologyModel(net)
        grand = CoalitionValuator(topo).value(topo.operators)
        assert math.fsum(v.value for v in result.values()) == pytest.approx(grand, rel=1e-9, abs=1e-12)

    def test_symmetry(self, glove_network):
        result = compute(glove_network)
        assert result["Alpha"].value == pytest.approx(result["Beta"].value)
        assert result["Alpha"].value == pytest.approx(5 / 6)
        assert result["Gamma"].value == pytest.approx(10 / 3)

    def test_null_player(self, single_operator):
        net = ShapleyInput(
            devices=list(single_operator.devices) + [Device("C"), Device("D")],
            private_links=list(single_operator.private_links) + [
                PrivateLink("C", "D", "Idle", bandwidth=50.0, latency=1.0)],
            demands=single_operator.demands,
        )
        result = compute(net)
        assert result["Idle"].value == pytest.approx(0.0, abs=1e-12)
        assert result["Alpha"].value == pytest.approx(7.0)

    def test_proportions(self, random_network):
        result = compute(random_network(seed=8))
        total = math.fsum(v.value for v in result.values())
        if total > 0:
            assert math.fsum(v.proportion for v in result.values()) == pytest.approx(1.0)
        else:
            assert all(v.proportion == 0.0 for v in result.values())

    def test_determinism(self, random_network):
        net = random_network(seed=9)
        assert compute(net) == compute(net)

    def test_parallel_matches_serial(self, random_network):
        net = random_network(seed=10, n_ops=3)
        serial = compute(net)
        parallel = compute(net, EngineConfig(workers=2, min_parallel_operators=1))
        assert list(parallel) == list(serial)
        for op in serial:
            assert parallel[op].value == pytest.approx(serial[op].value, rel=1e-12, abs=1e-12)


class TestFrames:

    def test_network_shapley(self):
        private_links = pd.DataFrame({
            "Device1": ["A", "A"],
            "Device2": ["B", "B"],
            "Operator": ["Alpha", "Beta"],
            "Bandwidth": [10, 10],
            "Latency": [5, 5],
        })
        devices = pd.DataFrame({"Device": ["A", "B"]})
        demand = pd.DataFrame({"Start": ["A"], "End": ["B"], "Traffic": [6]})
        out = network_shapley(private_links, devices, demand)
        assert list(out.columns) == ["Operator", "Value", "Percent"]
        assert out["Operator"].tolist() == ["Alpha", "Beta"]
        assert out["Value"].tolist() == [3.0, 3.0]
        assert out["Percent"].tolist() == [0.5, 0.5]

    def test_results_frame_rounds(self):
        frame = results_frame({"a": ShapleyValue("a", 1 / 3, 1 / 3)})
        assert frame.iloc[0].tolist() == ["a", 0.3333, 0.3333]

    def test_empty_results_frame(self):
        frame = results_frame({})
        assert frame.empty
        assert list(frame.columns) == ["Operator", "Value", "Percent"]
