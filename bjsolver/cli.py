"""
Command line interface.

    bjsolver ev         --decks 6 --s17 --surrender late
    bjsolver strategy   --decks 6 --s17 --surrender late
    bjsolver simulate   --decks 6 --hands 1000000 --seed 42
    bjsolver heuristic  --decks 6 --enhc --surrender enhcNoAce
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from bjsolver.analysis.house_edge import calculate_house_edge, format_house_edge
from bjsolver.analysis.simulator import SimulationConfig, simulate_house_edge
from bjsolver.engine.rules import (
    DEFAULT_RULES,
    BlackjackPayout,
    DoubleRestriction,
    RuleSet,
    SurrenderPolicy,
)
from bjsolver.solvers.ev_calculator import (
    calculate_ev,
    calculate_finite_deck_ev,
    calculate_infinite_deck_ev,
)
from bjsolver.solvers.strategy_table import generate_strategy_table, print_strategy_chart


def _deck_count(text: str) -> float:
    value = float(text)
    if not value > 0:
        raise argparse.ArgumentTypeError("deck count must be positive")
    return int(value) if value.is_integer() else value


def _add_rule_arguments(parser: argparse.ArgumentParser) -> None:
    rules = parser.add_argument_group("house rules")
    rules.add_argument(
        "--decks",
        type=_deck_count,
        default=DEFAULT_RULES.decks,
        help="Number of decks; 'inf' for an infinite shoe (default: %(default)s)",
    )
    soft17 = rules.add_mutually_exclusive_group()
    soft17.add_argument("--h17", dest="hit_soft_17", action="store_true", help="Dealer hits soft 17 (default)")
    soft17.add_argument("--s17", dest="hit_soft_17", action="store_false", help="Dealer stands on soft 17")
    parser.set_defaults(hit_soft_17=DEFAULT_RULES.hit_soft_17)
    rules.add_argument(
        "--surrender",
        choices=[p.value for p in SurrenderPolicy],
        default=DEFAULT_RULES.surrender.value,
        help="Surrender policy (default: %(default)s)",
    )
    rules.add_argument("--no-das", action="store_true", help="No doubling after splits")
    rules.add_argument(
        "--double",
        choices=[d.value for d in DoubleRestriction],
        default=DEFAULT_RULES.double_restriction.value,
        help="Totals that may be doubled (default: %(default)s)",
    )
    rules.add_argument("--no-rsa", action="store_true", help="Split aces may not be resplit")
    rules.add_argument(
        "--bj-pays",
        choices=[b.value for b in BlackjackPayout],
        default=DEFAULT_RULES.blackjack_pays.value,
        help="Blackjack payout (default: %(default)s)",
    )
    rules.add_argument("--enhc", action="store_true", help="No hole card (European, no peek)")
    rules.add_argument(
        "--max-split-hands",
        type=int,
        choices=[2, 3, 4],
        default=DEFAULT_RULES.max_split_hands,
        help="Maximum hands reachable by splitting (default: %(default)s)",
    )


def rules_from_args(args: argparse.Namespace) -> RuleSet:
    """Build a RuleSet from parsed rule arguments."""
    return RuleSet(
        hit_soft_17=args.hit_soft_17,
        surrender=args.surrender,
        double_after_split=not args.no_das,
        double_restriction=args.double,
        resplit_aces=not args.no_rsa,
        blackjack_pays=args.bj_pays,
        decks=args.decks,
        no_hole_card=args.enhc,
        max_split_hands=args.max_split_hands,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bjsolver",
        description="Blackjack EV, basic strategy and house edge tools",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    ev = sub.add_parser("ev", help="Exact house edge under optimal basic strategy")
    ev.add_argument(
        "--mode",
        choices=["auto", "infinite", "finite"],
        default="auto",
        help="auto: composition dependent for 1-8 decks; finite: 3-card removal (default: auto)",
    )
    _add_rule_arguments(ev)

    strategy = sub.add_parser("strategy", help="Print the basic strategy chart")
    _add_rule_arguments(strategy)

    simulate = sub.add_parser("simulate", help="Monte Carlo house edge")
    simulate.add_argument("--hands", type=int, default=100_000, help="Rounds to play (default: 100000)")
    simulate.add_argument("--seed", type=int, default=None, help="Random seed")
    simulate.add_argument(
        "--penetration", type=float, default=0.75, help="Fraction dealt before reshuffling (default: 0.75)"
    )
    simulate.add_argument("--csm", action="store_true", help="Reshuffle before every round")
    _add_rule_arguments(simulate)

    heuristic = sub.add_parser("heuristic", help="Approximate house edge from the additive rule model")
    _add_rule_arguments(heuristic)

    return parser


def progress_callback(done: int, total: int) -> None:
    """Print progress roughly every 5%."""
    step = max(1, total // 20)
    if done % step < 1024 or done == total:
        print(f"Progress: {done:,}/{total:,} ({100.0 * done / total:.1f}%)", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        rules = rules_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    t0 = time.time()
    if args.command == "ev":
        if args.mode == "infinite":
            result = calculate_infinite_deck_ev(rules)
        elif args.mode == "finite" and rules.uses_composition:
            result = calculate_finite_deck_ev(rules)
        else:
            result = calculate_ev(rules)
        print(result)
    elif args.command == "strategy":
        print_strategy_chart(generate_strategy_table(rules))
    elif args.command == "simulate":
        if args.hands <= 0:
            parser.error("--hands must be positive")
        try:
            config = SimulationConfig(penetration=args.penetration, continuous_shuffle=args.csm)
        except ValueError as exc:
            parser.error(str(exc))
        callback = progress_callback if args.verbose else None
        result = simulate_house_edge(args.hands, rules, callback, seed=args.seed, config=config)
        print(result)
    else:
        print(f"Heuristic house edge: {format_house_edge(calculate_house_edge(rules))}")

    if args.verbose:
        print(f"Elapsed: {time.time() - t0:.2f}s", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
