"""Tests for step reference parsing and resolution"""

import pytest

from taskgraph.agent.references import StepReference, iter_references, parse_path, resolve_params
from taskgraph.errors import UnresolvedReferenceError


OUTPUTS = {
    "fetch": {"body": "hello", "items": [{"name": "first"}, {"name": "second"}], "codes": {"200": "ok"}},
    "count": 3,
}


class TestParse:
    def test_output_segment_is_optional(self):
        assert StepReference.parse("fetch.output.items[1].name") == StepReference("fetch", ("items", 1, "name"))
        assert StepReference.parse("fetch.items[1].name") == StepReference("fetch", ("items", 1, "name"))

    def test_context_root_keeps_full_path(self):
        ref = StepReference.parse("context.output")
        assert ref.is_context
        assert ref.path == ("output",)

    def test_str_round_trips(self):
        assert str(StepReference.parse("fetch.items[0].name")) == "fetch.items[0].name"

    def test_malformed(self):
        with pytest.raises(ValueError):
            StepReference.parse("fetch..items")

    def test_ids_may_start_with_a_digit(self):
        assert StepReference.parse("1.output.name") == StepReference("1", ("name",))

    def test_every_placeholder_is_a_reference(self):
        assert [r.step_id for r in iter_references({"x": "{{2}} and {{ step-3.output }}"})] == ["2", "step-3"]
        with pytest.raises(ValueError, match="Malformed"):
            list(iter_references({"x": "{{not valid!}}"}))

    def test_parse_path(self):
        assert parse_path("[0].a.b[2]") == (0, "a", "b", 2)

    def test_iter_references_walks_nested_params(self):
        params = {"a": ["{{fetch.body}} and {{count}}"], "b": {"c": {"$ref": "context.user"}}}
        assert [str(r) for r in iter_references(params)] == ["fetch.body", "count", "context.user"]


class TestResolve:
    def test_whole_value_keeps_type(self):
        resolved = resolve_params({"items": "{{fetch.output.items}}", "n": "{{ count }}"}, OUTPUTS)
        assert resolved == {"items": OUTPUTS["fetch"]["items"], "n": 3}

    def test_embedded_value_is_rendered(self):
        resolved = resolve_params({"text": "Got {{fetch.body}} x{{count}}: {{fetch.items[0]}}"}, OUTPUTS)
        assert resolved["text"] == 'Got hello x3: {"name": "first"}'

    def test_ref_mapping(self):
        resolved = resolve_params({"name": {"$ref": "fetch.output.items[1].name"}}, OUTPUTS)
        assert resolved == {"name": "second"}

    def test_numeric_key_falls_back_to_string(self):
        assert resolve_params({"x": "{{fetch.codes[200]}}"}, OUTPUTS) == {"x": "ok"}

    def test_context_reference(self):
        resolved = resolve_params({"who": "{{context.user.name}}"}, {}, context={"user": {"name": "ada"}})
        assert resolved == {"who": "ada"}

    def test_non_reference_values_untouched(self):
        params = {"n": 1, "flag": True, "text": "plain {braces}", "list": [1, "two"]}
        assert resolve_params(params, {}) == params

    def test_missing_step_output(self):
        with pytest.raises(UnresolvedReferenceError) as exc:
            resolve_params({"x": "{{other.output}}"}, OUTPUTS, step_id="b")
        assert exc.value.step_id == "b"
        assert "has no successful output" in str(exc.value)

    def test_missing_key(self):
        with pytest.raises(UnresolvedReferenceError, match="key 'nope' not found"):
            resolve_params({"x": "{{fetch.output.nope}}"}, OUTPUTS)

    def test_index_out_of_range(self):
        with pytest.raises(UnresolvedReferenceError, match="out of range"):
            resolve_params({"x": "{{fetch.items[5]}}"}, OUTPUTS)

    def test_cannot_index_scalar(self):
        with pytest.raises(UnresolvedReferenceError, match="cannot index into int"):
            resolve_params({"x": "{{count.value}}"}, OUTPUTS)
