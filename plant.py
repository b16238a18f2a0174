"""plant.py

Plant instruction set and the stock plant grammar.

Symbols (defaults):
  F  forward by the current step length along the local up axis
  Q  detail: a short, randomly perturbed forward step
  B  shrink the step length
  +  rotate by a random positive angle about the local Z axis
  -  same, negative sense
  X, Y  growth markers, no spatial effect
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from lsystem import (
    BranchStack,
    Context,
    Evaluator,
    GrammarEngine,
    Instruction,
    InstructionTable,
    NoOpInstruction,
    ProductionRule,
)
from spatial import RandomSource, SpatialState, axis_vector, quat_from_axis_angle

SHRINK_RATIO = 0.65
MAX_ROTATION = 1.25  # radians


@dataclass(frozen=True)
class Forward(Instruction):
    symbol: str = "F"

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        s = context.state
        return context.with_state(s.advanced(s.step))


@dataclass(frozen=True)
class Detail(Instruction):
    """Micro step of length in [step/15, step/3] plus jitter up to step/5."""

    symbol: str = "Q"

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        s = context.state
        rnd = context.random
        lo = s.step / 15
        hi = s.step / 3
        randomness = s.step / 5

        jitter = np.array([rnd.real(0, 1, True) for _ in range(3)]) * randomness
        micro = rnd.real(lo, hi, True)
        return context.with_state(s.translated(np.array([0.0, micro, 0.0]) + jitter))


@dataclass(frozen=True)
class Shrink(Instruction):
    symbol: str = "B"
    ratio: float = SHRINK_RATIO

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        return context.with_state(context.state.scaled(self.ratio))


@dataclass(frozen=True)
class Rotate(Instruction):
    symbol: str = "+"
    direction: int = 1
    max_angle: float = MAX_ROTATION
    axis: str = "z"

    def evaluate(self, context: Context, stack: BranchStack) -> Context:
        angle = self.direction * self.max_angle * context.random.real(0, 1, True)
        q = quat_from_axis_angle(axis_vector(self.axis), angle)
        return context.with_state(context.state.rotated(q))


def plant_instructions() -> InstructionTable:
    return InstructionTable(
        [
            Forward(),
            NoOpInstruction("X"),
            NoOpInstruction("Y"),
            Rotate("-", direction=-1),
            Rotate("+", direction=1),
            Shrink(),
            Detail(),
        ]
    )


PLANT_AXIOM = "FFX"
PLANT_GENERATIONS = 10
PLANT_RULES = (
    ProductionRule("X", "[B-FY][B+FY]FX", 1.0),
    ProductionRule("Y", "[B-FY]", 1.0),
    # Detailing the branches
    ProductionRule("F", "QQQ", 1.0),
)


class PlantLSystem:
    """The stock plant: grammar, instruction set and starting context."""

    def __init__(
        self,
        generations: int = PLANT_GENERATIONS,
        *,
        seed: int = 0,
        grammar_seed: int | None = None,
    ) -> None:
        self.grammar = GrammarEngine(
            PLANT_AXIOM, PLANT_RULES, generations, seed=grammar_seed
        )
        self.instructions = plant_instructions()
        self.evaluator = Evaluator()
        self.seed = seed

    def initial_context(self) -> Context:
        return Context(SpatialState(step=1.0), RandomSource(self.seed))

    def expand(self) -> str:
        return self.grammar.expand()

    def evaluate(self, symbols: str | None = None) -> list[SpatialState]:
        if symbols is None:
            symbols = self.expand()
        return self.evaluator.run(symbols, self.initial_context(), self.instructions)
