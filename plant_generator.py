#!/usr/bin/env python3
"""plant_generator.py

Command-line front end for the stochastic plant L-system.

Key features:
- JSON-based input configuration (weighted rules, instruction table, start state).
- Seeded, reproducible expansion and evaluation.
- Visited states exported as JSON for downstream geometry.
- SVG skeleton view: states projected on a plane, one polyline per branch run.
- Random config generator for experimentation.

Run:
  python plant_generator.py render config.json output.svg
  python plant_generator.py evaluate config.json states.json
  python plant_generator.py random out.json --seed 123
  python plant_generator.py --help
"""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import math
import os
import random
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, cast

from lsystem import (
    BRANCH_CLOSE,
    BRANCH_OPEN,
    ConfigurationError,
    Context,
    Evaluator,
    GrammarEngine,
    Instruction,
    InstructionTable,
    LSystemError,
    NoOpInstruction,
    ProductionRule,
    Step,
)
from plant import (
    MAX_ROTATION,
    PLANT_AXIOM,
    PLANT_GENERATIONS,
    PLANT_RULES,
    SHRINK_RATIO,
    Detail,
    Forward,
    Rotate,
    Shrink,
)
from spatial import RandomSource, SpatialState, quat_from_euler

log = logging.getLogger(__name__)

Point = tuple[float, float]


# -------------------------
# Validation
# -------------------------


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigurationError(msg)


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float))
        and not isinstance(x, bool)
        and math.isfinite(x),
        f"{path} must be a finite number",
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_symbol(x: Any, path: str) -> str:
    _require(
        isinstance(x, str) and len(x) == 1, f"{path} must be a single-character string"
    )
    return cast(str, x)


def _as_bool(x: Any, path: str) -> bool:
    _require(isinstance(x, bool), f"{path} must be a boolean")
    return cast(bool, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def _as_vec3(x: Any, path: str) -> tuple[float, float, float]:
    _require(
        isinstance(x, list) and len(x) == 3, f"{path} must be a list of 3 numbers"
    )
    a, b, c = (_as_float(v, f"{path}[{i}]") for i, v in enumerate(x))
    return (a, b, c)


# -------------------------
# Config model
# -------------------------


@dataclass(frozen=True)
class SvgStyle:
    stroke: str = "#000"
    stroke_width: float = 1.0
    fill: str = "none"
    stroke_linecap: str = "round"
    stroke_linejoin: str = "round"


_PLANES = ("xy", "xz", "zy")


@dataclass(frozen=True)
class PlantConfig:
    name: str
    axiom: str
    generations: int
    grammar_seed: int | None
    rules: tuple[ProductionRule, ...]

    # instruction table: symbol -> action dict
    instructions: dict[str, dict[str, Any]]
    open_marker: str
    close_marker: str

    start: SpatialState
    seed: int | None

    # svg
    margin: float
    precision: int
    flip_y: bool
    width: float | None
    height: float | None
    style: SvgStyle
    background: str | None
    plane: str
    scale_width: bool


def default_instructions() -> dict[str, dict[str, Any]]:
    return {
        "F": {"type": "forward"},
        "X": {"type": "noop"},
        "Y": {"type": "noop"},
        "-": {"type": "rotate", "direction": -1, "max_angle": MAX_ROTATION},
        "+": {"type": "rotate", "direction": 1, "max_angle": MAX_ROTATION},
        "B": {"type": "shrink", "ratio": SHRINK_RATIO},
        "Q": {"type": "detail"},
    }


def _parse_rules(obj: Any) -> tuple[ProductionRule, ...]:
    rules: list[ProductionRule] = []
    if isinstance(obj, dict):
        for k, v in obj.items():
            sym = _as_symbol(k, "rules key")
            rules.append(ProductionRule(sym, _as_str(v, f"rules['{k}']")))
        return tuple(rules)

    _require(isinstance(obj, list), "rules must be an object or a list")
    for i, item in enumerate(obj):
        path = f"rules[{i}]"
        item = _as_dict(item, path)
        weight = _as_float(item.get("weight", 1.0), f"{path}.weight")
        _require(weight > 0, f"{path}.weight must be > 0")
        rules.append(
            ProductionRule(
                _as_symbol(item.get("predecessor"), f"{path}.predecessor"),
                _as_str(item.get("replacement"), f"{path}.replacement"),
                weight,
            )
        )
    return tuple(rules)


def build_instruction(sym: str, action: dict[str, Any]) -> Instruction:
    """Turn one instruction-table entry into an Instruction bound to ``sym``."""
    path = f"instructions['{sym}']"
    atype = action.get("type")
    _require(isinstance(atype, str), f"{path} must have string field 'type'")

    if atype == "forward":
        return Forward(sym)
    if atype == "detail":
        return Detail(sym)
    if atype == "noop":
        return NoOpInstruction(sym)
    if atype == "shrink":
        ratio = _as_float(action.get("ratio", SHRINK_RATIO), f"{path}.ratio")
        _require(ratio > 0, f"{path}.ratio must be > 0")
        return Shrink(sym, ratio=ratio)
    if atype == "rotate":
        direction = action.get("direction", 1)
        _require(
            not isinstance(direction, bool) and direction in (-1, 1),
            f"{path}.direction must be -1 or 1",
        )
        max_angle = _as_float(
            action.get("max_angle", MAX_ROTATION), f"{path}.max_angle"
        )
        axis = _as_str(action.get("axis", "z"), f"{path}.axis")
        _require(axis in ("x", "y", "z"), f"{path}.axis must be 'x', 'y' or 'z'")
        return Rotate(sym, direction=int(direction), max_angle=max_angle, axis=axis)

    raise ConfigurationError(f"Unknown instruction type '{atype}' for symbol '{sym}'")


def parse_config(obj: dict[str, Any]) -> PlantConfig:
    obj = _as_dict(obj, "root")

    name = _as_str(obj.get("name", "Plant"), "name")
    axiom = _as_str(obj.get("axiom", ""), "axiom")
    _require(len(axiom) > 0, "axiom must be non-empty")

    generations = _as_int(obj.get("generations", 0), "generations")
    _require(generations >= 0, "generations must be >= 0")

    grammar_seed = obj.get("grammar_seed")
    if grammar_seed is not None:
        grammar_seed = _as_int(grammar_seed, "grammar_seed")

    rules = _parse_rules(obj.get("rules", {}))

    branch = _as_dict(obj.get("branch", {}), "branch")
    open_marker = _as_symbol(branch.get("open", BRANCH_OPEN), "branch.open")
    close_marker = _as_symbol(branch.get("close", BRANCH_CLOSE), "branch.close")
    _require(open_marker != close_marker, "branch.open and branch.close must differ")

    raw_instructions = obj.get("instructions")
    if raw_instructions is None:
        instructions = default_instructions()
    else:
        instructions = {}
        for sym, action in _as_dict(raw_instructions, "instructions").items():
            _as_symbol(sym, "instructions keys")
            instructions[sym] = _as_dict(action, f"instructions['{sym}']")

    start_obj = _as_dict(obj.get("start", {}), "start")
    position = _as_vec3(start_obj.get("position", [0, 0, 0]), "start.position")
    euler = _as_vec3(start_obj.get("rotation", [0, 0, 0]), "start.rotation")
    step = _as_float(start_obj.get("step", 1.0), "start.step")
    _require(step > 0, "start.step must be > 0")
    start = SpatialState(
        position=position,
        rotation=quat_from_euler(*(math.radians(a) for a in euler)),
        step=step,
    )
    seed = start_obj.get("seed", 0)
    if seed is not None:
        seed = _as_int(seed, "start.seed")

    svg = _as_dict(obj.get("svg", {}), "svg")
    margin = _as_float(svg.get("margin", 1), "svg.margin")
    precision = _as_int(svg.get("precision", 3), "svg.precision")
    _require(0 <= precision <= 10, "svg.precision must be between 0 and 10")
    flip_y = _as_bool(svg.get("flip_y", True), "svg.flip_y")
    plane = _as_str(svg.get("plane", "xy"), "svg.plane")
    _require(plane in _PLANES, f"svg.plane must be one of {', '.join(_PLANES)}")
    scale_width = _as_bool(svg.get("scale_width", True), "svg.scale_width")

    width = svg.get("width")
    height = svg.get("height")
    if width is not None:
        width = _as_float(width, "svg.width")
        _require(width > 0, "svg.width must be > 0")
    if height is not None:
        height = _as_float(height, "svg.height")
        _require(height > 0, "svg.height must be > 0")

    style_obj = _as_dict(svg.get("style", {}), "svg.style")
    style = SvgStyle(
        stroke=_as_str(style_obj.get("stroke", "#000"), "svg.style.stroke"),
        stroke_width=_as_float(
            style_obj.get("stroke_width", 0.02), "svg.style.stroke_width"
        ),
        fill=_as_str(style_obj.get("fill", "none"), "svg.style.fill"),
        stroke_linecap=_as_str(
            style_obj.get("stroke_linecap", "round"), "svg.style.stroke_linecap"
        ),
        stroke_linejoin=_as_str(
            style_obj.get("stroke_linejoin", "round"), "svg.style.stroke_linejoin"
        ),
    )

    background = svg.get("background")
    if background is not None:
        background = _as_str(background, "svg.background")

    return PlantConfig(
        name=name,
        axiom=axiom,
        generations=generations,
        grammar_seed=grammar_seed,
        rules=rules,
        instructions=instructions,
        open_marker=open_marker,
        close_marker=close_marker,
        start=start,
        seed=seed,
        margin=margin,
        precision=precision,
        flip_y=flip_y,
        width=width,
        height=height,
        style=style,
        background=background,
        plane=plane,
        scale_width=scale_width,
    )


def build_grammar(cfg: PlantConfig) -> GrammarEngine:
    return GrammarEngine(cfg.axiom, cfg.rules, cfg.generations, seed=cfg.grammar_seed)


def build_instructions(cfg: PlantConfig) -> InstructionTable:
    table = InstructionTable(reserved=(cfg.open_marker, cfg.close_marker))
    for sym, action in cfg.instructions.items():
        table.register(build_instruction(sym, action))
    return table


def build_evaluator(cfg: PlantConfig) -> Evaluator:
    return Evaluator(cfg.open_marker, cfg.close_marker)


def initial_context(cfg: PlantConfig) -> Context:
    return Context(cfg.start.clone(), RandomSource(cfg.seed))


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e


# -------------------------
# Skeleton polylines
# -------------------------


@dataclass
class PolylineBuffer:
    polylines: list[list[Point]]

    def start_new(self, p: Point) -> None:
        self.polylines.append([p])

    def current(self) -> list[Point]:
        if not self.polylines:
            raise RuntimeError("current() called before start_new()")
        return self.polylines[-1]

    def add_point(self, p: Point) -> None:
        cur = self.current()
        if not cur or cur[-1] != p:
            cur.append(p)


def project(state: SpatialState, plane: str = "xy") -> Point:
    x, y, z = (float(c) for c in state.position)
    if plane == "xy":
        return (x, y)
    if plane == "xz":
        return (x, z)
    if plane == "zy":
        return (z, y)
    raise ConfigurationError(f"Unknown projection plane '{plane}'")


def steps_to_runs(
    steps: Iterable[Step], *, plane: str = "xy"
) -> list[tuple[list[Point], float]]:
    """Group evaluator steps into (polyline, step length) runs.

    A step that resumes after a branch close starts a new run at the
    restored position, so the branch tip is never joined to the trunk. A
    change of step length also starts a new run, so every run has a single
    thickness.
    """
    buf = PolylineBuffer(polylines=[])
    lengths: list[float] = []

    for step in steps:
        length = step.after.step
        if not buf.polylines or step.resumed or lengths[-1] != length:
            buf.start_new(project(step.before, plane))
            lengths.append(length)
        buf.add_point(project(step.after, plane))

    return [(pl, n) for pl, n in zip(buf.polylines, lengths) if len(pl) >= 2]


def steps_to_polylines(
    steps: Iterable[Step], *, plane: str = "xy"
) -> list[list[Point]]:
    return [pl for pl, _ in steps_to_runs(steps, plane=plane)]


# -------------------------
# Output
# -------------------------


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def compute_bounds(polylines: list[list[Point]]) -> tuple[float, float, float, float]:
    _require(len(polylines) > 0, "No drawable geometry produced.")
    xs = [x for pl in polylines for x, _ in pl]
    ys = [y for pl in polylines for _, y in pl]
    return (min(xs), min(ys), max(xs), max(ys))


def _fmt(x: float, precision: int) -> str:
    # Normalise -0.0 so it never produces "-0" in SVG output.
    if not x:
        x = 0.0
    s = f"{x:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s in ("", "-0"):
        return "0"
    return s


def write_svg(
    polylines: list[list[Point]],
    *,
    out_path: str,
    margin: float,
    precision: int,
    flip_y: bool,
    width: float | None,
    height: float | None,
    style: SvgStyle,
    background: str | None,
    title: str | None = None,
    widths: list[float] | None = None,
) -> None:
    """Write polylines as SVG.

    ``widths`` scales style.stroke_width per polyline; shrunk branches are
    drawn thinner.
    """
    _require(
        widths is None or len(widths) == len(polylines),
        "widths must have one entry per polyline",
    )
    minx, miny, maxx, maxy = compute_bounds(polylines)

    minx -= margin
    miny -= margin
    maxx += margin
    maxy += margin
    w = maxx - minx
    h = maxy - miny
    _require(
        w > 0 and h > 0,
        "Degenerate bounds after margin (width or height is zero). "
        "Set svg.margin > 0 to render collinear or single-point geometry.",
    )

    svg_w_attr = f' width="{_fmt(float(width), precision)}"' if width else ""
    svg_h_attr = f' height="{_fmt(float(height), precision)}"' if height else ""

    view_box = (
        f"{_fmt(minx, precision)} {_fmt(miny, precision)} {_fmt(w, precision)} "
        f"{_fmt(h, precision)}"
    )

    lines: list[str] = []
    lines.append('<?xml version="1.0" encoding="UTF-8"?>')
    lines.append(
        "<svg xmlns=\"http://www.w3.org/2000/svg\" version=\"1.1\" "
        f"viewBox=\"{view_box}\"{svg_w_attr}{svg_h_attr}>"
    )

    if title:
        safe_title = (
            title.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        )
        lines.append(f"  <title>{safe_title}</title>")

    if background and background.lower() != "none":
        lines.append(
            f'  <rect x="{_fmt(minx, precision)}" y="{_fmt(miny, precision)}" '
            f'width="{_fmt(w, precision)}" height="{_fmt(h, precision)}" '
            f'fill="{background}" />'
        )

    style_attr = (
        f'stroke="{style.stroke}" '
        f'fill="{style.fill}" stroke-linecap="{style.stroke_linecap}" '
        f'stroke-linejoin="{style.stroke_linejoin}"'
    )

    if flip_y:
        # Plants grow along +Y; flip about y = (miny + maxy) so they stand upright.
        flip_y_line = _fmt(miny + maxy, precision)
        lines.append(f'  <g transform="translate(0,{flip_y_line}) scale(1,-1)">')
        indent = "    "
    else:
        indent = "  "

    for i, pl in enumerate(polylines):
        pts = " ".join(f"{_fmt(x, precision)},{_fmt(y, precision)}" for x, y in pl)
        sw = style.stroke_width * (widths[i] if widths is not None else 1.0)
        lines.append(
            f'{indent}<polyline points="{pts}" {style_attr} '
            f'stroke-width="{_fmt(sw, precision)}" />'
        )

    if flip_y:
        lines.append("  </g>")

    lines.append("</svg>")

    _ensure_parent_dir(out_path)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
        f.write("\n")


def states_to_json(states: list[SpatialState], *, name: str) -> dict[str, Any]:
    return {
        "name": name,
        "count": len(states),
        "states": [s.to_dict() for s in states],
    }


def dump_json(obj: dict[str, Any], path: str) -> None:
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
        f.write("\n")


# -------------------------
# Preset and random configs
# -------------------------


def preset_config() -> dict[str, Any]:
    """The stock plant as a JSON-ready config."""
    return {
        "name": "Plant",
        "axiom": PLANT_AXIOM,
        "generations": PLANT_GENERATIONS,
        "grammar_seed": 0,
        "rules": [
            {
                "predecessor": r.predecessor,
                "replacement": r.replacement,
                "weight": r.weight,
            }
            for r in PLANT_RULES
        ],
        "instructions": default_instructions(),
        "start": {
            "position": [0, 0, 0],
            "rotation": [0, 0, 0],
            "step": 1.0,
            "seed": 0,
        },
        "svg": {"margin": 1, "precision": 3, "flip_y": True, "plane": "xy"},
    }


def _random_branch_word(
    rng: random.Random, length: int, *, p_branch: float = 0.20
) -> str:
    """Random replacement word with balanced brackets.

    Produces symbols from: F, Q, B, +, -, [, ]
    Every opened branch starts with a shrink so sub-branches get thinner.
    """
    word: list[str] = []
    depth = 0

    for _ in range(length):
        r = rng.random()
        if r < p_branch and depth < 3:
            word.append("[B")
            depth += 1
            continue
        if r < p_branch * 2 and depth > 0:
            word.append("]")
            depth -= 1
            continue

        t = rng.random()
        if t < 0.45:
            word.append("F")
        elif t < 0.6:
            word.append("Q")
        elif t < 0.8:
            word.append("+")
        else:
            word.append("-")

    word.extend("]" * depth)

    if "F" not in word:
        word.append("F")

    return "".join(word)


def generate_random_config(seed: int | None = None) -> dict[str, Any]:
    rng = random.Random(seed)

    generations = rng.randint(3, 6)
    step = rng.choice([0.5, 1.0, 2.0])
    max_angle = rng.choice([0.4, 0.6, 0.8, 1.0, 1.25])

    # X has a few weighted alternatives; each always re-emits X so growth continues.
    rules: list[dict[str, Any]] = []
    for _ in range(rng.randint(2, 4)):
        body = _random_branch_word(rng, rng.randint(3, 8))
        rules.append(
            {
                "predecessor": "X",
                "replacement": f"{body}[B{rng.choice('+-')}X]FX",
                "weight": rng.choice([0.5, 1.0, 2.0, 3.0]),
            }
        )
    if rng.random() < 0.5:
        rules.append({"predecessor": "F", "replacement": "QQ", "weight": 1.0})

    cfg = {
        "name": "Random Plant",
        "axiom": "FX",
        "generations": generations,
        "grammar_seed": rng.randint(0, 2**31 - 1),
        "rules": rules,
        "instructions": {
            "F": {"type": "forward"},
            "Q": {"type": "detail"},
            "B": {"type": "shrink", "ratio": rng.choice([0.55, 0.65, 0.75])},
            "+": {"type": "rotate", "direction": 1, "max_angle": max_angle},
            "-": {"type": "rotate", "direction": -1, "max_angle": max_angle},
            "X": {"type": "noop"},
        },
        "start": {
            "position": [0, 0, 0],
            "rotation": [0, 0, 0],
            "step": step,
            "seed": rng.randint(0, 2**31 - 1),
        },
        "svg": {"margin": step, "precision": 3, "flip_y": True, "plane": "xy"},
    }

    # Internal sanity check: generated config must always parse cleanly.
    parse_config(cfg)
    return cfg


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
INPUT JSON SYNTAX

Top-level keys

  name: string (optional)
      A human-readable title; written into the SVG <title>.

  axiom: string (required)
      The initial word.

  generations: integer >= 0 (default 0)
      Number of rewriting passes.

  grammar_seed: integer or null (optional)
      Seed for rule selection. With a seed every expansion is identical;
      null draws fresh randomness.

  rules: list or object (optional)
      [{"predecessor": "X", "replacement": "[B-FX]FX", "weight": 2.0}, ...]
      or the shorthand {"F": "QQQ"} (weight 1).
      Rules sharing a predecessor are picked in proportion to their weights.
      Symbols without a rule rewrite to themselves.

  branch: object (optional)
      {"open": "[", "close": "]"} branch markers.

  instructions: object mapping single-character symbol -> action (optional)
      Defaults to the stock plant set. Symbols not listed are no-ops.

        { "type": "forward" }
            Advance along the local up axis by the step length.
        { "type": "detail" }
            Short randomly perturbed forward step.
        { "type": "shrink", "ratio": 0.65 }
            Multiply the step length by ratio.
        { "type": "rotate", "direction": +1|-1, "max_angle": 1.25, "axis": "z" }
            Rotate by direction * max_angle * U(0, 1) radians about a local axis.
        { "type": "noop" }

  start: object (optional)
      position: [x, y, z] (default origin)
      rotation: [x, y, z] XYZ Euler angles in degrees (default 0)
      step: number > 0 (default 1)
      seed: integer or null (default 0), seed for instruction randomness

  svg: object (optional)
      margin, precision (0..10), flip_y, width, height, background,
      plane ("xy" | "xz" | "zy"), style {stroke, stroke_width, fill,
      stroke_linecap, stroke_linejoin}
      scale_width: boolean (default true); each branch run is drawn with
      stroke_width times its step length, so shrunk branches are thinner.

Examples

  python plant_generator.py preset plant.json
  python plant_generator.py render plant.json plant.svg
  python plant_generator.py random out.json --seed 123
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="plant_generator.py",
        description="Stochastic plant L-system: expand, evaluate and render.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pe = sub.add_parser("expand", help="Print the expanded symbol string.")
    pe.add_argument("config", help="Path to the input JSON config.")
    pe.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Print at most this many symbols.",
    )

    pv = sub.add_parser("evaluate", help="Write visited turtle states as JSON.")
    pv.add_argument("config", help="Path to the input JSON config.")
    pv.add_argument("output", help="Path to write the JSON states.")

    pr = sub.add_parser("render", help="Render the branch skeleton to an SVG file.")
    pr.add_argument("config", help="Path to the input JSON config.")
    pr.add_argument("output", help="Path to write the SVG output.")

    pc = sub.add_parser(
        "validate", help="Validate a JSON config and print a brief summary."
    )
    pc.add_argument("config", help="Path to the input JSON config.")

    pg = sub.add_parser(
        "random", help="Generate a random JSON config for experimentation."
    )
    pg.add_argument("output", help="Where to write the generated JSON file.")
    pg.add_argument(
        "--seed", type=int, default=None, help="Seed for repeatable randomness."
    )

    pp = sub.add_parser("preset", help="Write the stock plant config.")
    pp.add_argument("output", help="Where to write the JSON file.")

    return p


# -------------------------
# Commands
# -------------------------


def _load(config_path: str) -> PlantConfig:
    cfg = parse_config(load_json(config_path))
    log.debug(
        "loaded %s: axiom=%r generations=%d rules=%d",
        cfg.name,
        cfg.axiom,
        cfg.generations,
        len(cfg.rules),
    )
    return cfg


def evaluate_config(cfg: PlantConfig) -> list[SpatialState]:
    grammar = build_grammar(cfg)
    table = build_instructions(cfg)
    symbols = grammar.expand()
    return build_evaluator(cfg).run(symbols, initial_context(cfg), table)


def cmd_expand(config_path: str, limit: int | None) -> None:
    cfg = _load(config_path)
    symbols = build_grammar(cfg).expand()
    if limit is not None:
        _require(limit >= 0, "--limit must be >= 0")
        symbols = symbols[:limit]
    print(symbols)


def cmd_evaluate(config_path: str, output_path: str) -> None:
    cfg = _load(config_path)
    states = evaluate_config(cfg)
    dump_json(states_to_json(states, name=cfg.name), output_path)


def cmd_render(config_path: str, output_path: str) -> None:
    cfg = _load(config_path)
    grammar = build_grammar(cfg)
    table = build_instructions(cfg)

    steps = build_evaluator(cfg).walk(grammar.expand(), initial_context(cfg), table)
    runs = steps_to_runs(steps, plane=cfg.plane)
    log.debug("rendering %d polylines", len(runs))

    write_svg(
        [pl for pl, _ in runs],
        out_path=output_path,
        margin=cfg.margin,
        precision=cfg.precision,
        flip_y=cfg.flip_y,
        width=cfg.width,
        height=cfg.height,
        style=cfg.style,
        background=cfg.background,
        title=cfg.name,
        widths=[n for _, n in runs] if cfg.scale_width else None,
    )


_VALIDATE_SYMBOL_LIMIT = 10_000


def cmd_validate(config_path: str) -> None:
    cfg = _load(config_path)
    grammar = build_grammar(cfg)
    table = build_instructions(cfg)

    print(f"name: {cfg.name}")
    print(f"axiom length: {len(cfg.axiom)}")
    print(f"generations: {cfg.generations}")
    print(f"rules: {len(cfg.rules)}")
    print(f"instructions: {' '.join(table.symbols())}")
    print(
        f"start: position={tuple(float(c) for c in cfg.start.position)} "
        f"step={cfg.start.step} seed={cfg.seed}"
    )

    # Every expansion of a grammar with balanced words is balanced, whichever
    # rules the seed picks.
    build_evaluator(cfg).check_grammar(grammar)

    # Bounded expansion + evaluation catches structural errors without
    # materialising an exponential expansion.
    bounded = list(itertools.islice(grammar.stream(), _VALIDATE_SYMBOL_LIMIT))
    truncated = len(bounded) == _VALIDATE_SYMBOL_LIMIT
    steps = list(
        build_evaluator(cfg).walk(
            bounded, initial_context(cfg), table, require_closed=not truncated
        )
    )
    sym_label = f"{len(bounded)}+" if truncated else str(len(bounded))
    print(f"symbols (sampled): {sym_label}")
    print(f"states: {len(steps)}")
    if truncated:
        print(
            f"warning: expansion exceeds {_VALIDATE_SYMBOL_LIMIT} symbols; "
            "stats are based on the first portion only"
        )
    if not steps:
        raise ConfigurationError("Config produces no turtle states")


def cmd_random(output_path: str, seed: int | None) -> None:
    dump_json(generate_random_config(seed), output_path)


def cmd_preset(output_path: str) -> None:
    dump_json(preset_config(), output_path)


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.cmd == "expand":
            cmd_expand(args.config, args.limit)
        elif args.cmd == "evaluate":
            cmd_evaluate(args.config, args.output)
        elif args.cmd == "render":
            cmd_render(args.config, args.output)
        elif args.cmd == "validate":
            cmd_validate(args.config)
        elif args.cmd == "random":
            cmd_random(args.output, args.seed)
        elif args.cmd == "preset":
            cmd_preset(args.output)
        else:
            raise AssertionError("unreachable")
    except ConfigurationError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except LSystemError as e:
        print(f"Structure error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
