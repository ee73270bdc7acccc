#!/usr/bin/env python3
"""
Command line adapter around the Shapley engine.

Reads a JSON network from a file or standard input and writes JSON results to a file or
standard output. Logging goes to standard error.

Examples:
  network-shapley simulate -i network.json
  network-shapley compare -i scenarios.json -o deltas.json
  network-shapley linkestimate --operator Alpha < network.json
"""
from __future__ import annotations
import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, List, Optional, Sequence

from network_compare import compare
from network_errors import ComputationOverflowError, EngineError, ValidationError
from network_linkestimate import link_estimate
from network_shapley import EngineConfig, compute
from network_topology import ShapleyInput, collapse_small_operators

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def load_json(path: Optional[str]) -> Any:
    try:
        if path is None or path == "-":
            return json.load(sys.stdin)
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Input is not valid JSON: {exc}") from None


def write_json(payload: Any, path: Optional[str]) -> None:
    text = json.dumps(payload)
    if path is None or path == "-":
        print(text)
    else:
        with open(path, "w") as f:
            f.write(text + "\n")


def _network(data: Any, args: argparse.Namespace, keep: Sequence[str] = ()) -> ShapleyInput:
    if not isinstance(data, dict):
        raise ValidationError("Input must be a JSON object.")
    shapley_input = ShapleyInput.from_dict(data)
    if args.collapse_threshold:
        shapley_input = collapse_small_operators(shapley_input, args.collapse_threshold, keep)
    return shapley_input


def run_simulate(args: argparse.Namespace, config: EngineConfig) -> List[dict]:
    result = compute(_network(load_json(args.input), args), config)
    return [dataclasses.asdict(v) for v in result.values()]


def run_compare(args: argparse.Namespace, config: EngineConfig) -> dict:
    data = load_json(args.input)
    if not isinstance(data, dict) or "baseline" not in data or "modified" not in data:
        raise ValidationError("Compare input needs 'baseline' and 'modified' networks.")
    return dataclasses.asdict(compare(_network(data["baseline"], args), _network(data["modified"], args), config))


def run_linkestimate(args: argparse.Namespace, config: EngineConfig) -> dict:
    rows = link_estimate(_network(load_json(args.input), args, keep=[args.operator]), args.operator, config)
    return dict(results=[dataclasses.asdict(r) for r in rows],
                total_value=sum(max(r.value, 0.0) for r in rows))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="network-shapley",
        description="Shapley value allocation among network operators",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:")[1] if __doc__ else None,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--input", "-i", type=str, default=None, help="Input JSON file (default: stdin)")
    common.add_argument("--output", "-o", type=str, default=None, help="Output JSON file (default: stdout)")
    common.add_argument("--max-operators", type=int, default=EngineConfig.max_operators,
                        help="Largest operator count enumerated exhaustively")
    common.add_argument("--workers", "-j", type=int, default=1, help="Processes used to value coalitions")
    common.add_argument("--collapse-threshold", type=int, default=0,
                        help="Merge operators with fewer private links than this into Others")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.add_parser("simulate", parents=[common], help="Shapley value per operator")
    subparsers.add_parser("compare", parents=[common], help="Compare a baseline and a modified network")
    link_parser = subparsers.add_parser("linkestimate", parents=[common], help="Shapley value per link")
    link_parser.add_argument("--operator", required=True, help="Operator whose links are valued")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {"simulate": run_simulate, "compare": run_compare, "linkestimate": run_linkestimate}
    if args.command not in commands:
        parser.print_help()
        return 1

    config = EngineConfig(max_operators=args.max_operators, workers=args.workers)
    try:
        payload = commands[args.command](args, config)
    except ValidationError as exc:
        logger.error("Invalid input: %s", exc)
        return 2
    except ComputationOverflowError as exc:
        logger.error("%s", exc)
        return 3
    except EngineError as exc:
        logger.error("Computation failed: %s", exc)
        return 4

    write_json(payload, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
