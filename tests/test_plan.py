"""Tests for plan construction, validation and graph queries"""

import pytest

from taskgraph.agent.plan import ExecutionPlan, PlanStep, StepResult, StepStatus, find_cycle
from taskgraph.errors import PlanValidationError

from tests.conftest import make_plan


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_valid_plan_builds(self):
        plan = make_plan([
            {"id": "a", "tool": "echo"},
            {"id": "b", "tool": "echo", "depends_on": ["a"]},
        ])
        assert plan.step_ids == ["a", "b"]

    def test_empty_plan_rejected(self):
        with pytest.raises(PlanValidationError, match="no steps"):
            make_plan([])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(PlanValidationError) as exc:
            make_plan([{"id": "a", "tool": "echo"}, {"id": "a", "tool": "echo"}])
        assert exc.value.step_id == "a"

    def test_unknown_dependency_rejected(self):
        with pytest.raises(PlanValidationError, match="unknown step 'ghost'"):
            make_plan([{"id": "a", "tool": "echo", "depends_on": ["ghost"]}])

    def test_self_dependency_rejected(self):
        with pytest.raises(PlanValidationError, match="depends on itself"):
            make_plan([{"id": "a", "tool": "echo", "depends_on": ["a"]}])

    def test_cycle_reported_with_path(self):
        with pytest.raises(PlanValidationError) as exc:
            make_plan([
                {"id": "a", "tool": "echo", "depends_on": ["c"]},
                {"id": "b", "tool": "echo", "depends_on": ["a"]},
                {"id": "c", "tool": "echo", "depends_on": ["b"]},
            ])
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_missing_tool_rejected(self):
        with pytest.raises(PlanValidationError, match="has no tool"):
            make_plan([{"id": "a"}])

    def test_unknown_tool_rejected_when_tools_known(self):
        plan = make_plan([{"id": "a", "tool": "teleport"}])
        with pytest.raises(PlanValidationError, match="unknown tool 'teleport'"):
            plan.validate(["echo"])

    def test_reserved_context_id_rejected(self):
        with pytest.raises(PlanValidationError, match="reserved"):
            make_plan([{"id": "context", "tool": "echo"}])

    def test_confirmation_point_must_name_a_step(self):
        with pytest.raises(PlanValidationError, match="Confirmation point"):
            make_plan([{"id": "a", "tool": "echo"}], confirmation_points={"b": "Sure?"})

    def test_malformed_reference_rejected(self):
        with pytest.raises(PlanValidationError):
            PlanStep(id="b", tool="echo", params={"x": {"$ref": "not a ref!"}})


# ---------------------------------------------------------------------------
# Parsing loose model output
# ---------------------------------------------------------------------------


class TestFromDict:
    def test_accepts_alternate_spellings(self):
        plan = ExecutionPlan.from_dict({
            "steps": [
                {"step_id": "s1", "tool_name": "echo", "args": {"value": 1}},
                {"id": "s2", "tool": "echo", "dependsOn": ["s1"], "maxRetries": 5},
            ]
        })
        s1, s2 = plan.steps
        assert s1.tool == "echo" and s1.params == {"value": 1}
        assert s2.depends_on == ("s1",)
        assert s2.max_retries == 5

    def test_name_defaults_to_id(self):
        plan = make_plan([{"id": "a", "tool": "echo"}])
        assert plan.steps[0].name == "a"

    def test_per_step_confirm_becomes_confirmation_point(self):
        plan = make_plan([
            {"id": "a", "tool": "echo"},
            {"id": "b", "tool": "echo", "confirm": "Really send it?"},
            {"id": "c", "tool": "echo", "confirm": True, "name": "Deploy"},
        ])
        assert plan.confirmation_points == {"b": "Really send it?", "c": "Proceed with 'Deploy'?"}

    def test_confirmation_points_as_list(self):
        plan = make_plan(
            [{"id": "a", "tool": "echo"}],
            confirmation_points=[{"step_id": "a", "question": "Go?"}],
        )
        assert plan.confirmation_points == {"a": "Go?"}

    def test_non_object_rejected(self):
        with pytest.raises(PlanValidationError):
            ExecutionPlan.from_dict(["not", "a", "plan"])

    def test_params_must_be_object(self):
        with pytest.raises(PlanValidationError, match="params must be an object"):
            make_plan([{"id": "a", "tool": "echo", "params": "oops"}])

    def test_round_trip_keeps_identity(self):
        plan = make_plan(
            [{"id": "a", "tool": "echo", "timeout": 2}, {"id": "b", "tool": "echo", "depends_on": ["a"]}],
            confirmation_points={"b": "Ok?"},
        )
        restored = ExecutionPlan.from_dict(plan.to_dict())
        assert restored.id == plan.id
        assert restored.steps == plan.steps
        assert restored.confirmation_points == {"b": "Ok?"}


# ---------------------------------------------------------------------------
# Implicit dependencies from references
# ---------------------------------------------------------------------------


class TestImplicitDependencies:
    def test_placeholder_adds_dependency(self):
        plan = make_plan([
            {"id": "fetch", "tool": "echo"},
            {"id": "sum", "tool": "echo", "params": {"value": "Summary of {{fetch.output.body}}"}},
        ])
        assert plan.get_step("sum").depends_on == ("fetch",)

    def test_ref_mapping_adds_dependency_once(self):
        step = PlanStep(
            id="b", tool="echo",
            params={"x": {"$ref": "a.output"}, "y": "{{a.output.z}}"},
            depends_on=("a",),
        )
        assert step.depends_on == ("a",)

    def test_context_reference_is_not_a_dependency(self):
        plan = make_plan([{"id": "a", "tool": "echo", "params": {"value": "{{context.user}}"}}])
        assert plan.steps[0].depends_on == ()

    def test_reference_to_unknown_step_fails_validation(self):
        with pytest.raises(PlanValidationError, match="unknown step 'nowhere'"):
            make_plan([{"id": "a", "tool": "echo", "params": {"value": "{{nowhere.output}}"}}])

    def test_numeric_step_ids_are_referenceable(self):
        plan = make_plan([
            {"id": 1, "tool": "echo", "params": {"value": "x"}},
            {"id": 2, "tool": "echo", "params": {"value": "{{1.output}}"}},
        ])
        assert plan.get_step("2").depends_on == ("1",)

    def test_unparseable_placeholder_rejected(self):
        with pytest.raises(PlanValidationError, match="Malformed reference"):
            make_plan([{"id": "a", "tool": "echo", "params": {"value": "Hi {{ the user }}"}}])

    def test_step_ids_must_be_addressable(self):
        with pytest.raises(PlanValidationError, match="may only hold"):
            make_plan([{"id": "step one", "tool": "echo"}])


# ---------------------------------------------------------------------------
# Graph queries
# ---------------------------------------------------------------------------


class TestGraph:
    @pytest.fixture()
    def diamond(self):
        return make_plan([
            {"id": "d", "tool": "echo", "depends_on": ["b", "c"]},
            {"id": "b", "tool": "echo", "depends_on": ["a"]},
            {"id": "c", "tool": "echo", "depends_on": ["a"]},
            {"id": "a", "tool": "echo"},
        ])

    def test_topological_order(self, diamond):
        order = [s.id for s in diamond.topological_order()]
        assert order.index("a") < order.index("b") < order.index("d")
        assert order.index("c") < order.index("d")

    def test_parallel_groups(self, diamond):
        assert diamond.parallel_groups() == [["a"], ["b", "c"], ["d"]]

    def test_dependents_are_transitive(self, diamond):
        assert diamond.dependents_of("a") == {"b", "c", "d"}
        assert diamond.dependents_of("d") == set()

    def test_find_cycle_none_for_dag(self):
        assert find_cycle({"a": [], "b": ["a"]}) is None


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------


class TestStepResult:
    def test_terminal_statuses(self):
        assert not StepStatus.PENDING.is_terminal
        assert not StepStatus.RUNNING.is_terminal
        assert StepStatus.SKIPPED.is_terminal

    def test_from_dict_restores_datetimes(self):
        original = StepResult(step_id="a", step_name="A", status=StepStatus.SUCCEEDED, output={"n": 1})
        data = original.to_dict()
        restored = StepResult.from_dict(data)
        assert restored.status == StepStatus.SUCCEEDED
        assert restored.output == {"n": 1}
        assert restored.duration_ms == 0
