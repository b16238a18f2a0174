#!/usr/bin/env python3
import io
import json
import math
import os
import re
import tempfile
from contextlib import redirect_stderr
from typing import Any

import pytest

from lsystem import (
    ConfigurationError,
    Evaluator,
    InstructionTable,
    UnbalancedBranchError,
)
from plant import Forward, Rotate, Shrink
from plant_generator import (
    PlantConfig,
    Point,
    SvgStyle,
    build_grammar,
    build_instruction,
    build_instructions,
    compute_bounds,
    evaluate_config,
    generate_random_config,
    initial_context,
    load_json,
    main,
    parse_config,
    preset_config,
    project,
    steps_to_polylines,
    steps_to_runs,
    write_svg,
)
from spatial import RandomSource, SpatialState

_EXAMPLE_DIR = os.path.join(os.path.dirname(__file__), "example")


def _write_config(tmpdir: str, obj: dict[str, Any]) -> str:
    path = os.path.join(tmpdir, "cfg.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f)
    return path


class TestConfigParsing:
    def test_basic_config(self) -> None:
        config_data = {
            "name": "Test",
            "axiom": "FX",
            "generations": 2,
            "rules": [
                {"predecessor": "X", "replacement": "[+FX]FX", "weight": 2.0},
                {"predecessor": "X", "replacement": "FX", "weight": 1.0},
            ],
            "instructions": {
                "F": {"type": "forward"},
                "+": {"type": "rotate", "direction": 1, "max_angle": 0.5},
            },
            "start": {"position": [1, 2, 3], "rotation": [0, 0, 90], "step": 2},
            "svg": {"margin": 5, "precision": 2, "flip_y": True},
        }
        config = parse_config(config_data)
        assert isinstance(config, PlantConfig)
        assert config.axiom == "FX"
        assert config.generations == 2
        assert [r.weight for r in config.rules] == [2.0, 1.0]
        assert config.start.position == pytest.approx([1, 2, 3])
        assert config.start.step == 2.0
        assert config.start.heading() == pytest.approx([-1, 0, 0], abs=1e-12)
        assert config.seed == 0
        assert config.grammar_seed is None

    def test_rules_shorthand(self) -> None:
        config = parse_config({"axiom": "F", "rules": {"F": "QQQ"}})
        assert len(config.rules) == 1
        assert config.rules[0].replacement == "QQQ"
        assert config.rules[0].weight == 1.0

    def test_defaults(self) -> None:
        config = parse_config({"axiom": "F"})
        assert config.generations == 0
        assert set(config.instructions) == set("FXY-+BQ")
        assert config.open_marker == "["
        assert config.close_marker == "]"
        assert config.plane == "xy"

    def test_missing_axiom(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"generations": 1})

    def test_invalid_types(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "generations": "1"})
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "generations": True})

    def test_multichar_rule_key(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "rules": {"FF": "F"}})

    def test_non_positive_weight(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config(
                {
                    "axiom": "F",
                    "rules": [{"predecessor": "F", "replacement": "FF", "weight": 0}],
                }
            )

    @pytest.mark.parametrize("weight", ["Infinity", "-Infinity", "NaN"])
    def test_non_finite_weight_from_json(self, weight: str) -> None:
        text = (
            '{"axiom": "A", "rules": ['
            '{"predecessor": "A", "replacement": "a", "weight": ' + weight + "}]}"
        )
        with pytest.raises(ConfigurationError):
            parse_config(json.loads(text))

    def test_non_finite_numbers_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "start": {"step": float("inf")}})
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "svg": {"margin": float("nan")}})
        with pytest.raises(ConfigurationError):
            build_instruction("+", {"type": "rotate", "max_angle": float("inf")})

    def test_scale_width(self) -> None:
        assert parse_config({"axiom": "F"}).scale_width is True
        cfg = parse_config({"axiom": "F", "svg": {"scale_width": False}})
        assert cfg.scale_width is False
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "svg": {"scale_width": 1}})

    def test_precision_out_of_range(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "svg": {"precision": 15}})

    def test_bad_plane(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "svg": {"plane": "yx"}})

    def test_bad_start_position(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "start": {"position": [0, 0]}})

    def test_identical_branch_markers(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_config({"axiom": "F", "branch": {"open": "|", "close": "|"}})


class TestInstructionFactory:
    def test_known_types(self) -> None:
        assert build_instruction("G", {"type": "forward"}) == Forward("G")
        assert build_instruction("b", {"type": "shrink", "ratio": 0.5}) == Shrink(
            "b", ratio=0.5
        )
        rot = build_instruction("<", {"type": "rotate", "direction": -1, "axis": "x"})
        assert isinstance(rot, Rotate)
        assert rot.symbol == "<"
        assert rot.direction == -1
        assert rot.axis == "x"

    def test_unknown_type(self) -> None:
        with pytest.raises(ConfigurationError):
            build_instruction("F", {"type": "teleport"})

    def test_bad_direction(self) -> None:
        with pytest.raises(ConfigurationError):
            build_instruction("+", {"type": "rotate", "direction": 2})

    @pytest.mark.parametrize("direction", [True, False, 1.5, "1"])
    def test_direction_must_be_plus_or_minus_one(self, direction: Any) -> None:
        with pytest.raises(ConfigurationError):
            build_instruction("+", {"type": "rotate", "direction": direction})

    def test_bad_ratio(self) -> None:
        with pytest.raises(ConfigurationError):
            build_instruction("B", {"type": "shrink", "ratio": -0.5})

    def test_marker_cannot_be_instruction(self) -> None:
        cfg = parse_config({"axiom": "F", "instructions": {"[": {"type": "forward"}}})
        with pytest.raises(ConfigurationError):
            build_instructions(cfg)

    def test_custom_marker_cannot_be_instruction(self) -> None:
        cfg = parse_config(
            {
                "axiom": "F",
                "branch": {"open": "(", "close": ")"},
                "instructions": {"(": {"type": "noop"}},
            }
        )
        with pytest.raises(ConfigurationError):
            build_instructions(cfg)


class TestEvaluation:
    def test_grammar_seed_reproducible(self) -> None:
        cfg = parse_config(
            {
                "axiom": "X" * 50,
                "generations": 1,
                "grammar_seed": 3,
                "rules": [
                    {"predecessor": "X", "replacement": "F", "weight": 1},
                    {"predecessor": "X", "replacement": "FF", "weight": 1},
                ],
            }
        )
        assert build_grammar(cfg).expand() == build_grammar(cfg).expand()

    def test_evaluate_config_is_deterministic(self) -> None:
        cfg = parse_config(load_json(os.path.join(_EXAMPLE_DIR, "bush.json")))
        a = evaluate_config(cfg)
        b = evaluate_config(cfg)
        assert len(a) > 0
        assert all(x.same_as(y) for x, y in zip(a, b))

    def test_initial_context_is_fresh(self) -> None:
        cfg = parse_config({"axiom": "F", "start": {"seed": 4}})
        a = initial_context(cfg)
        b = initial_context(cfg)
        assert a.random is not b.random
        assert a.random.real(0, 1) == b.random.real(0, 1)
        assert a.state is not cfg.start

    def test_unbalanced_config(self) -> None:
        cfg = parse_config({"axiom": "F]F"})
        with pytest.raises(UnbalancedBranchError):
            evaluate_config(cfg)


class TestPolylines:
    def test_branch_starts_new_polyline(self) -> None:
        table = InstructionTable([Forward()])
        ctx = initial_context(parse_config({"axiom": "F"}))
        steps = Evaluator().walk("F[F]F", ctx, table)
        polylines = steps_to_polylines(steps)

        # Trunk and branch form one run; after the close a new run starts at
        # the restored point (0, 1).
        assert len(polylines) == 2
        assert polylines[0] == [
            pytest.approx((0, 0)),
            pytest.approx((0, 1)),
            pytest.approx((0, 2)),
        ]
        assert polylines[1] == [pytest.approx((0, 1)), pytest.approx((0, 2))]

    def test_non_moving_steps_do_not_add_points(self) -> None:
        table = InstructionTable([Forward(), Shrink()])
        ctx = initial_context(parse_config({"axiom": "F"}))
        polylines = steps_to_polylines(Evaluator().walk("BBF", ctx, table))
        assert len(polylines) == 1
        assert len(polylines[0]) == 2

    def test_runs_split_on_step_length(self) -> None:
        table = InstructionTable([Forward(), Shrink()])
        ctx = initial_context(parse_config({"axiom": "F"}))
        runs = steps_to_runs(Evaluator().walk("F[BF]F", ctx, table))

        assert [n for _, n in runs] == pytest.approx([1.0, 0.65, 1.0])
        assert runs[0][0] == [pytest.approx((0, 0)), pytest.approx((0, 1))]
        assert runs[1][0] == [pytest.approx((0, 1)), pytest.approx((0, 1.65))]
        assert runs[2][0] == [pytest.approx((0, 1)), pytest.approx((0, 2))]

    def test_project(self) -> None:
        s = SpatialState(position=[1, 2, 3])
        assert project(s, "xy") == (1, 2)
        assert project(s, "xz") == (1, 3)
        assert project(s, "zy") == (3, 2)
        with pytest.raises(ConfigurationError):
            project(s, "yy")

    def test_rotation_about_x_leaves_xy_column(self) -> None:
        table = InstructionTable([Forward(), Rotate(axis="x")])
        ctx = initial_context(parse_config({"axiom": "F"}))
        steps = list(Evaluator().walk("+F", ctx, table))
        x, y, z = steps[-1].after.position
        assert x == pytest.approx(0, abs=1e-12)
        assert math.hypot(y, z) == pytest.approx(1.0)


class TestComputeBounds:
    def test_basic_bounds(self) -> None:
        polylines = [[(0.0, 5.0), (10.0, -2.0)], [(3.0, 8.0), (7.0, 1.0)]]
        min_x, min_y, max_x, max_y = compute_bounds(polylines)
        assert min_x == pytest.approx(0.0)
        assert min_y == pytest.approx(-2.0)
        assert max_x == pytest.approx(10.0)
        assert max_y == pytest.approx(8.0)

    def test_empty_polylines_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            compute_bounds([])


class TestSvg:
    def _render(
        self,
        polylines: list[list[Point]],
        *,
        margin: float = 5,
        precision: int = 2,
        flip_y: bool = False,
        width: float | None = None,
        height: float | None = None,
        style: SvgStyle | None = None,
        background: str | None = None,
        title: str | None = None,
        widths: list[float] | None = None,
    ) -> str:
        """Helper: write SVG to a temp file and return its content."""
        if style is None:
            style = SvgStyle()
        with tempfile.TemporaryDirectory() as tmpdir:
            out_path = os.path.join(tmpdir, "out.svg")
            write_svg(
                polylines,
                out_path=out_path,
                margin=margin,
                precision=precision,
                flip_y=flip_y,
                width=width,
                height=height,
                style=style,
                background=background,
                title=title,
                widths=widths,
            )
            with open(out_path) as f:
                return f.read()

    def test_write_svg(self) -> None:
        content = self._render([[(0.0, 0.0), (10.0, 10.0)]], margin=0)
        assert "<svg" in content
        assert 'points="0,0 10,10"' in content

    def test_negative_zero_is_normalised(self) -> None:
        content = self._render([[(-0.0001, 0.0), (10.0, 10.0)]], margin=0)
        assert 'points="0,0 10,10"' in content

    def test_write_svg_flip_y(self) -> None:
        content = self._render([[(0.0, 0.0), (10.0, 5.0)]], flip_y=True)
        assert 'transform="translate(' in content
        assert "scale(1,-1)" in content

    def test_write_svg_background(self) -> None:
        content = self._render([[(0.0, 0.0), (10.0, 5.0)]], background="#ff0000")
        assert "<rect" in content
        assert 'fill="#ff0000"' in content

    def test_write_svg_width_height(self) -> None:
        content = self._render([[(0.0, 0.0), (10.0, 5.0)]], width=200.0, height=100.0)
        assert 'width="200"' in content
        assert 'height="100"' in content

    def test_write_svg_title(self) -> None:
        content = self._render([[(0.0, 0.0), (10.0, 5.0)]], title="My <Plant>")
        assert "<title>" in content
        assert "My &lt;Plant&gt;" in content

    def test_stroke_width_per_polyline(self) -> None:
        content = self._render(
            [[(0.0, 0.0), (0.0, 10.0)], [(0.0, 5.0), (5.0, 8.0)]],
            style=SvgStyle(stroke_width=2.0),
            widths=[1.0, 0.5],
        )
        assert content.count('stroke-width="2"') == 1
        assert content.count('stroke-width="1"') == 1

    def test_uniform_stroke_width_without_widths(self) -> None:
        content = self._render(
            [[(0.0, 0.0), (0.0, 10.0)], [(0.0, 5.0), (5.0, 8.0)]],
            style=SvgStyle(stroke_width=0.5),
        )
        assert content.count('stroke-width="0.5"') == 2

    def test_widths_length_mismatch(self) -> None:
        with pytest.raises(ConfigurationError):
            self._render([[(0.0, 0.0), (10.0, 5.0)]], widths=[1.0, 1.0])

    def test_degenerate_bounds(self) -> None:
        with pytest.raises(ConfigurationError):
            self._render([[(0.0, 0.0), (0.0, 5.0)]], margin=0)


class TestGeneratedConfigs:
    def test_random_generator(self) -> None:
        cfg = generate_random_config(seed=42)
        assert cfg["axiom"] == "FX"
        assert isinstance(cfg["generations"], int)
        assert all(r["predecessor"] in "XF" for r in cfg["rules"])

        # Determinism check
        assert generate_random_config(seed=42) == cfg

    @pytest.mark.parametrize("seed", range(10))
    def test_random_configs_evaluate(self, seed: int) -> None:
        cfg = parse_config(generate_random_config(seed=seed))
        assert len(evaluate_config(cfg)) > 0

    def test_preset_matches_example(self) -> None:
        assert preset_config() == load_json(os.path.join(_EXAMPLE_DIR, "plant.json"))


class TestLoadJson:
    def test_malformed_json(self) -> None:
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as tmp:
            tmp.write("{ not valid json }")
            tmp_path = tmp.name
        try:
            with pytest.raises(ConfigurationError):
                load_json(tmp_path)
        finally:
            os.unlink(tmp_path)


class TestCLI:
    def test_validate_command(self) -> None:
        plant = os.path.join(_EXAMPLE_DIR, "plant.json")
        assert main(["validate", plant]) == 0

    def test_validate_truncated_expansion(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(
                tmpdir, {"axiom": "F", "generations": 12, "rules": {"F": "F[+F]F"}}
            )
            assert main(["validate", path]) == 0
        assert "warning: expansion exceeds" in capsys.readouterr().out

    def test_validate_rejects_unbalanced_alternative(self) -> None:
        # Whether "F]" is ever picked depends on the draws; validate rejects it
        # regardless of the seed.
        rules = [
            {"predecessor": "X", "replacement": "XX", "weight": 1},
            {"predecessor": "X", "replacement": "F", "weight": 1},
            {"predecessor": "X", "replacement": "F]", "weight": 1},
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            for grammar_seed in (115, 0, 1):
                path = _write_config(
                    tmpdir,
                    {
                        "axiom": "XX",
                        "generations": 3,
                        "grammar_seed": grammar_seed,
                        "rules": rules,
                    },
                )
                with redirect_stderr(io.StringIO()) as err:
                    assert main(["validate", path]) == 2
                assert "Structure error" in err.getvalue()

    def test_validate_rejects_unclosed_axiom(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, {"axiom": "F[F"})
            with redirect_stderr(io.StringIO()):
                assert main(["validate", path]) == 2

    def test_render_command(self) -> None:
        plant = os.path.join(_EXAMPLE_DIR, "plant.json")
        with tempfile.TemporaryDirectory() as tmpdir:
            out = os.path.join(tmpdir, "out.svg")
            assert main(["render", plant, out]) == 0
            with open(out) as f:
                assert "<polyline" in f.read()

    def _stroke_widths(self, config: dict[str, Any]) -> set[str]:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, config)
            out = os.path.join(tmpdir, "out.svg")
            assert main(["render", path, out]) == 0
            with open(out) as f:
                content = f.read()
        return set(re.findall(r'stroke-width="([^"]+)"', content))

    def test_render_shrunk_branches_are_thinner(self) -> None:
        config = preset_config()
        config["generations"] = 3
        assert len(self._stroke_widths(config)) > 1

    def test_render_uniform_width_when_scaling_off(self) -> None:
        config = preset_config()
        config["generations"] = 3
        config["svg"]["scale_width"] = False
        assert self._stroke_widths(config) == {"1"}

    def test_evaluate_command(self) -> None:
        plant = os.path.join(_EXAMPLE_DIR, "plant.json")
        with tempfile.TemporaryDirectory() as tmpdir:
            out = os.path.join(tmpdir, "states.json")
            assert main(["evaluate", plant, out]) == 0
            data = load_json(out)
        assert data["name"] == "Plant"
        assert data["count"] == len(data["states"]) > 0
        assert len(data["states"][0]["rotation"]) == 4

    def test_expand_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(
                tmpdir, {"axiom": "FX", "generations": 1, "rules": {"X": "[F]X"}}
            )
            assert main(["expand", path]) == 0
            assert capsys.readouterr().out.strip() == "F[F]X"
            assert main(["expand", path, "--limit", "2"]) == 0
            assert capsys.readouterr().out.strip() == "F["

    def test_random_and_preset_commands(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            rnd = os.path.join(tmpdir, "random.json")
            pre = os.path.join(tmpdir, "preset.json")
            assert main(["random", rnd, "--seed", "7"]) == 0
            assert main(["preset", pre]) == 0
            assert load_json(rnd) == generate_random_config(7)
            assert load_json(pre) == preset_config()

    def test_unbalanced_returns_error_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, {"axiom": "F]"})
            with redirect_stderr(io.StringIO()) as err:
                assert main(["render", path, os.path.join(tmpdir, "o.svg")]) == 2
        assert "Structure error" in err.getvalue()

    def test_file_not_found_returns_error_code(self) -> None:
        with redirect_stderr(io.StringIO()):
            assert main(["render", "nonexistent_config.json", "out.svg"]) == 2

    def test_invalid_config_returns_error_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, {"axiom": "F", "generations": "bad"})
            with redirect_stderr(io.StringIO()):
                assert main(["validate", path]) == 2


class TestExampleConfigs:
    """Regression tests: every example config must render without error."""

    @pytest.mark.parametrize("filename", ["plant.json", "bush.json", "fan.json"])
    def test_example_renders(self, filename: str) -> None:
        path = os.path.join(_EXAMPLE_DIR, filename)
        with tempfile.TemporaryDirectory() as tmpdir:
            out = os.path.join(tmpdir, "out.svg")
            assert main(["render", path, out]) == 0
            with open(out) as f:
                content = f.read()
        assert "<svg" in content
        assert "<polyline" in content
        assert "viewBox=" in content

    def test_fan_uses_custom_markers(self) -> None:
        cfg = parse_config(load_json(os.path.join(_EXAMPLE_DIR, "fan.json")))
        states = evaluate_config(cfg)
        assert len(states) == 10
        # Every state stays in the x = 0 plane since rotations are about X.
        assert all(abs(s.position[0]) < 1e-12 for s in states)

    def test_plant_example_matches_plant_system(self) -> None:
        from plant import PlantLSystem

        cfg = parse_config(load_json(os.path.join(_EXAMPLE_DIR, "plant.json")))
        plant = PlantLSystem(seed=0, grammar_seed=0)
        a = evaluate_config(cfg)
        b = plant.evaluate()
        assert len(a) == len(b)
        assert all(x.same_as(y) for x, y in zip(a, b))

    def test_random_source_seeded_from_start(self) -> None:
        cfg = parse_config(load_json(os.path.join(_EXAMPLE_DIR, "bush.json")))
        assert isinstance(initial_context(cfg).random, RandomSource)
        assert initial_context(cfg).random.seed == 3
