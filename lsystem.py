"""lsystem.py

Stochastic L-system core: weighted grammar rewriting plus a stack-based
turtle evaluator with pluggable per-symbol instructions.

Key pieces:
- GrammarEngine: iterative rewriting with weight-proportional rule choice.
- InstructionTable: symbol -> Instruction, unknown symbols are no-ops.
- Evaluator: one left-to-right walk, branches scoped by an explicit stack.

The evaluator is independent of any particular geometry; see spatial.py for
the state type used by the plant instruction set.
"""

from __future__ import annotations

import bisect
import dataclasses
import itertools
import logging
import math
import random
from collections.abc import Generator, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)

BRANCH_OPEN = "["
BRANCH_CLOSE = "]"


# -------------------------
# Errors
# -------------------------


class LSystemError(Exception):
    pass


class ConfigurationError(LSystemError, ValueError):
    pass


class DuplicateSymbolError(ConfigurationError):
    pass


class UnbalancedBranchError(LSystemError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _check_symbol(sym: Any, what: str) -> None:
    _require(
        isinstance(sym, str) and len(sym) == 1,
        f"{what} must be a single-character string, got {sym!r}",
    )


# -------------------------
# Grammar
# -------------------------


@dataclass(frozen=True)
class ProductionRule:
    predecessor: str
    replacement: str
    weight: float = 1.0


class GrammarEngine:
    """Expands an axiom through weighted production rules.

    With ``seed`` set, every expansion restarts from that seed and is
    reproducible. Without it, one OS-seeded generator is kept for the life of
    the engine and successive expansions may differ.
    """

    def __init__(
        self,
        axiom: str,
        rules: Iterable[ProductionRule],
        generations: int,
        *,
        seed: int | None = None,
    ) -> None:
        _require(isinstance(axiom, str), "axiom must be a string")
        _require(
            isinstance(generations, int) and not isinstance(generations, bool),
            "generations must be an integer",
        )
        _require(generations >= 0, "generations must be >= 0")

        grouped: dict[str, list[ProductionRule]] = {}
        for rule in rules:
            _check_symbol(rule.predecessor, "rule predecessor")
            _require(
                isinstance(rule.replacement, str),
                f"replacement for '{rule.predecessor}' must be a string",
            )
            _require(
                isinstance(rule.weight, (int, float))
                and not isinstance(rule.weight, bool)
                and math.isfinite(rule.weight)
                and rule.weight > 0,
                f"rule '{rule.predecessor}' -> '{rule.replacement}' must have "
                f"a positive finite weight, got {rule.weight!r}",
            )
            grouped.setdefault(rule.predecessor, []).append(rule)

        self.axiom = axiom
        self.generations = generations
        self.seed = seed
        self._rules = {k: tuple(v) for k, v in grouped.items()}
        # Cumulative weights per predecessor, in rule order.
        self._cumulative = {
            k: tuple(itertools.accumulate(r.weight for r in v))
            for k, v in self._rules.items()
        }
        self._rng = random.Random(seed)

    @property
    def rules(self) -> tuple[ProductionRule, ...]:
        return tuple(r for group in self._rules.values() for r in group)

    def rules_for(self, symbol: str) -> tuple[ProductionRule, ...]:
        return self._rules.get(symbol, ())

    def _fresh_rng(self) -> random.Random:
        if self.seed is not None:
            return random.Random(self.seed)
        return self._rng

    def choose(self, symbol: str, rng: random.Random) -> str:
        """Replacement for one occurrence of ``symbol``."""
        group = self._rules.get(symbol)
        if not group:
            return symbol
        if len(group) == 1:
            return group[0].replacement
        cumulative = self._cumulative[symbol]
        sample = rng.random() * cumulative[-1]
        i = bisect.bisect_right(cumulative, sample)
        # Float rounding can put the sample exactly on the total.
        return group[min(i, len(group) - 1)].replacement

    def expand(self) -> str:
        rng = self._fresh_rng()
        current = self.axiom
        for gen in range(self.generations):
            current = "".join(self.choose(ch, rng) for ch in current)
            log.debug("generation %d: %d symbols", gen + 1, len(current))
        return current

    def stream(self) -> Generator[str, None, None]:
        """Yield expanded symbols in order without building the full string.

        Uses an explicit stack of (string, index, depth) frames. Rule choices
        are drawn depth-first, so for stochastic grammars the result matches
        expand() in distribution rather than draw for draw.
        """
        rng = self._fresh_rng()
        stack: list[tuple[str, int, int]] = [(self.axiom, 0, 0)]

        while stack:
            s, i, d = stack.pop()
            if i >= len(s):
                continue

            ch = s[i]
            stack.append((s, i + 1, d))

            if d < self.generations and ch in self._rules:
                # Replacement sits above the continuation so it is consumed
                # first, keeping left-to-right order.
                stack.append((self.choose(ch, rng), 0, d + 1))
            else:
                yield ch

    def __repr__(self) -> str:
        return (
            f"GrammarEngine(axiom={self.axiom!r}, rules={len(self.rules)}, "
            f"generations={self.generations}, seed={self.seed!r})"
        )


# -------------------------
# Context and instructions
# -------------------------


@dataclass(frozen=True)
class Context:
    """Turtle state at one point of the walk.

    ``random`` is a handle to a shared cursor; copies share it.
    """

    state: Any
    random: Any

    def copy(self) -> Context:
        return dataclasses.replace(self, state=self.state.clone())

    def with_state(self, state: Any) -> Context:
        return dataclasses.replace(self, state=state)


class BranchStack:
    """Saved contexts for the enclosing branches, innermost last."""

    def __init__(self) -> None:
        self._items: list[Context] = []

    def push(self, context: Context) -> None:
        self._items.append(context)

    def pop(self) -> Context:
        if not self._items:
            raise UnbalancedBranchError("branch close with no open branch")
        return self._items.pop()

    def peek(self) -> Context | None:
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Context]:
        return iter(tuple(self._items))


class Instruction:
    """Behaviour bound to one symbol.

    Subclasses implement evaluate() as a pure function of the input context
    (plus draws from ``context.random``). They may read the branch stack but
    must not modify it.
    """

    symbol: str = ""

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        raise NotImplementedError


@dataclass(frozen=True)
class NoOpInstruction(Instruction):
    symbol: str = ""

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        return context.copy()


class InstructionTable:
    def __init__(
        self,
        instructions: Iterable[Instruction] = (),
        *,
        reserved: Iterable[str] = (BRANCH_OPEN, BRANCH_CLOSE),
    ) -> None:
        self._by_symbol: dict[str, Instruction] = {}
        self._reserved = frozenset(reserved)
        for instruction in instructions:
            self.register(instruction)

    def register(self, instruction: Instruction) -> None:
        sym = instruction.symbol
        _check_symbol(sym, f"symbol of {type(instruction).__name__}")
        _require(
            sym not in self._reserved,
            f"'{sym}' is a branch marker and cannot be bound to an instruction",
        )
        if sym in self._by_symbol:
            raise DuplicateSymbolError(
                f"symbol '{sym}' is already claimed by "
                f"{type(self._by_symbol[sym]).__name__}"
            )
        self._by_symbol[sym] = instruction

    def lookup(self, symbol: str) -> Instruction:
        found = self._by_symbol.get(symbol)
        if found is None:
            return NoOpInstruction(symbol)
        return found

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._by_symbol

    def __len__(self) -> int:
        return len(self._by_symbol)

    def symbols(self) -> list[str]:
        return sorted(self._by_symbol)


# -------------------------
# Evaluator
# -------------------------


@dataclass(frozen=True)
class Step:
    symbol: str
    before: Any
    after: Any
    depth: int
    # True when a branch closed since the previous step, i.e. ``before`` is a
    # restored snapshot rather than the previous step's result.
    resumed: bool


class Evaluator:
    def __init__(
        self, open_marker: str = BRANCH_OPEN, close_marker: str = BRANCH_CLOSE
    ) -> None:
        _check_symbol(open_marker, "branch open marker")
        _check_symbol(close_marker, "branch close marker")
        _require(open_marker != close_marker, "branch markers must differ")
        self.open_marker = open_marker
        self.close_marker = close_marker

    def check_balanced(self, symbols: str, what: str = "input") -> None:
        depth = 0
        for pos, sym in enumerate(symbols):
            if sym == self.open_marker:
                depth += 1
            elif sym == self.close_marker:
                depth -= 1
                if depth < 0:
                    raise UnbalancedBranchError(
                        f"{what}: '{sym}' at position {pos} has no matching "
                        f"'{self.open_marker}'"
                    )
        if depth:
            raise UnbalancedBranchError(
                f"{what}: {depth} '{self.open_marker}' left unclosed"
            )

    def check_grammar(self, grammar: GrammarEngine) -> None:
        """Reject grammars that can expand to an unbalanced sequence.

        A balanced axiom whose rules rewrite only non-marker symbols into
        balanced words stays balanced under any choice of rules.
        """
        self.check_balanced(grammar.axiom, "axiom")
        for rule in grammar.rules:
            if rule.predecessor in (self.open_marker, self.close_marker):
                raise UnbalancedBranchError(
                    f"rule for '{rule.predecessor}' rewrites a branch marker"
                )
            self.check_balanced(
                rule.replacement, f"rule '{rule.predecessor}' -> '{rule.replacement}'"
            )

    def walk(
        self,
        symbols: Iterable[str],
        initial: Context,
        table: InstructionTable,
        *,
        require_closed: bool = True,
    ) -> Generator[Step, None, None]:
        """Yield one Step per instruction symbol, in input order."""
        stack = BranchStack()
        current = initial
        resumed = False
        max_depth = 0
        count = 0

        for pos, sym in enumerate(symbols):
            if sym == self.open_marker:
                stack.push(current.copy())
                max_depth = max(max_depth, len(stack))
                continue

            if sym == self.close_marker:
                if not len(stack):
                    raise UnbalancedBranchError(
                        f"'{sym}' at position {pos} has no matching "
                        f"'{self.open_marker}'"
                    )
                current = stack.pop()
                resumed = True
                continue

            nxt = table.lookup(sym).evaluate(current, stack)
            yield Step(sym, current.state, nxt.state, len(stack), resumed)
            current = nxt
            resumed = False
            count += 1

        if require_closed and len(stack):
            raise UnbalancedBranchError(
                f"{len(stack)} '{self.open_marker}' left unclosed at end of input"
            )
        log.debug("walked %d instruction symbols, max depth %d", count, max_depth)

    def run(
        self, symbols: Iterable[str], initial: Context, table: InstructionTable
    ) -> list[Any]:
        """Visited states, one per non-marker symbol.

        Raises UnbalancedBranchError for malformed input; nothing is returned
        in that case.
        """
        return [step.after for step in self.walk(symbols, initial, table)]
