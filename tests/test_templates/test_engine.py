"""Tests for the story-string template engine."""

import pytest

from contextforge.errors import ConfigurationError
from contextforge.templates.engine import (
    DEFAULT_STORY_STRING,
    Conditional,
    FunctionCall,
    TemplateEngine,
    Text,
    Variable,
)


class TestRender:
    def setup_method(self):
        self.engine = TemplateEngine()

    def test_variable_substitution(self):
        assert self.engine.render("Hi {{char}}!", {"char": "Aria"}) == "Hi Aria!"

    def test_missing_variable_renders_empty(self):
        assert self.engine.render("[{{nope}}]", {}) == "[]"

    def test_conditional_kept(self):
        out = self.engine.render("{{#if scenario}}S: {{scenario}}{{/if}}", {"scenario": "Forest"})
        assert out == "S: Forest"

    @pytest.mark.parametrize("value", [None, "", "   ", 0, False])
    def test_conditional_dropped_for_blank(self, value):
        assert self.engine.render("a{{#if x}}b{{/if}}c", {"x": value}) == "ac"

    def test_nested_conditionals(self):
        template = "{{#if a}}A{{#if b}}B{{/if}}{{/if}}"
        assert self.engine.render(template, {"a": "1", "b": "1"}) == "AB"
        assert self.engine.render(template, {"a": "1", "b": ""}) == "A"
        assert self.engine.render(template, {"a": "", "b": "1"}) == ""

    def test_custom_function(self):
        engine = TemplateEngine({"upper": lambda content, variables: content.upper()})
        assert engine.render("{{#upper}}hi {{char}}{{/upper}}", {"char": "bo"}) == "HI BO"

    def test_custom_function_receives_args(self):
        def repeat(content, times, variables):
            return content * int(times)

        out = self.engine.render("{{#repeat 3}}x{{/repeat}}", {}, functions={"repeat": repeat})
        assert out == "xxx"

    def test_unregistered_function_renders_empty(self):
        assert self.engine.render("a{{#shout}}b{{/shout}}c", {}) == "ac"

    def test_unclosed_block_does_not_raise(self):
        assert self.engine.render("{{#if x}}kept", {"x": "y"}) == "kept"

    def test_stray_close_renders_nothing(self):
        assert self.engine.render("a{{/if}}b", {}) == "ab"

    def test_default_story_string(self):
        out = self.engine.render(
            DEFAULT_STORY_STRING,
            {"system": "SYS", "char": "Aria", "personality": "kind", "scenario": ""},
        )
        assert out == "SYS\nAria's personality: kind\n"

    def test_register_rejects_if(self):
        with pytest.raises(ConfigurationError):
            self.engine.register("if", lambda content, variables: content)


class TestParse:
    def test_ast_shape(self):
        nodes = TemplateEngine().parse("x{{v}}{{#if c}}y{{/if}}{{#f a b}}z{{/f}}")
        assert nodes == [
            Text("x"),
            Variable("v"),
            Conditional("c", (Text("y"),)),
            FunctionCall("f", ("a", "b"), (Text("z"),)),
        ]


class TestValidate:
    def setup_method(self):
        self.engine = TemplateEngine()

    def test_valid(self):
        result = self.engine.validate("{{#if a}}{{a}}{{/if}}", {"a": ""})
        assert result.valid is True
        assert result.errors == []

    def test_unknown_variable_reported_once(self):
        result = self.engine.validate("{{x}} {{x}}", {})
        assert result.valid is False
        assert result.errors == ["Unknown variable: {{x}}"]

    def test_unknown_function(self):
        result = self.engine.validate("{{#shout}}hi{{/shout}}", {})
        assert result.errors == ["Unknown custom function: {{#shout}}"]

    def test_unclosed_block(self):
        result = self.engine.validate("{{#if a}}text", {"a": ""})
        assert "Unclosed {{#if}} block" in result.errors

    def test_unexpected_close(self):
        result = self.engine.validate("text{{/if}}", {})
        assert result.errors == ["Unexpected {{/if}} tag"]

    def test_missing_condition(self):
        result = self.engine.validate("{{#if}}x{{/if}}", {})
        assert "Missing condition in {{#if}} block" in result.errors

    def test_inner_block_closed_by_outer_tag(self):
        engine = TemplateEngine({"wrap": lambda content, variables: content})
        result = engine.validate("{{#wrap}}{{#if a}}x{{/wrap}}", {"a": ""})
        assert result.errors == ["Unclosed {{#if}} block"]


class TestConditionalReference:
    def test_blank_condition_drops_block(self):
        assert TemplateEngine().render("{{#if x}}A{{/if}}B", {"x": ""}) == "B"

    def test_set_condition_keeps_block(self):
        assert TemplateEngine().render("{{#if x}}A{{/if}}B", {"x": "v"}) == "AB"
