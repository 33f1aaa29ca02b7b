"""Story-string template language: variables, conditionals and custom blocks.

Syntax::

    {{name}}                          variable substitution
    {{#if name}}...{{/if}}            kept only when ``name`` is non-blank
    {{#func arg1 arg2}}...{{/func}}   dispatched to a registered function

Templates are tokenized, parsed into a small AST and rendered by walking the
tree. Blocks may nest; an inner block is only evaluated when its enclosing
block is kept. Rendering never raises on malformed input: an unclosed block
is treated as closed at the end of the template and a stray closing tag
renders as nothing. ``validate`` reports those problems instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional, Union

from contextforge.errors import ConfigurationError

logger = logging.getLogger(__name__)

TemplateFunction = Callable[..., str]

CONDITIONAL = "if"

DEFAULT_STORY_STRING = (
    "{{#if system}}{{system}}\n{{/if}}"
    "{{#if wiBefore}}{{wiBefore}}\n{{/if}}"
    "{{#if description}}{{description}}\n{{/if}}"
    "{{#if personality}}{{char}}'s personality: {{personality}}\n{{/if}}"
    "{{#if scenario}}Scenario: {{scenario}}\n{{/if}}"
    "{{#if first_mes}}{{first_mes}}\n{{/if}}"
    "{{#if mes_example}}Example conversation:\n{{mes_example}}\n{{/if}}"
    "{{#if wiAfter}}{{wiAfter}}\n{{/if}}"
    "{{#if persona}}{{persona}}\n{{/if}}"
)

_TAG = re.compile(r"\{\{([#/]?)([A-Za-z0-9_]+)((?:\s+[^{}]*?)?)\s*\}\}")


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Conditional:
    name: str
    children: tuple["Node", ...] = ()


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple[str, ...] = ()
    children: tuple["Node", ...] = ()


Node = Union[Text, Variable, Conditional, FunctionCall]


@dataclass(frozen=True)
class _Token:
    kind: str  # "text", "var", "open", "close"
    value: str
    args: tuple[str, ...] = ()


@dataclass
class TemplateValidation:
    """Result of ``TemplateEngine.validate``."""

    valid: bool
    errors: list[str]


def _tokenize(template: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    for match in _TAG.finditer(template):
        if match.start() > pos:
            tokens.append(_Token("text", template[pos:match.start()]))
        prefix, name, rest = match.groups()
        args = tuple(rest.split())
        if prefix == "#":
            tokens.append(_Token("open", name, args))
        elif prefix == "/":
            tokens.append(_Token("close", name))
        elif args:
            # "{{a b}}" is not part of the grammar
            tokens.append(_Token("text", match.group(0)))
        else:
            tokens.append(_Token("var", name))
        pos = match.end()
    if pos < len(template):
        tokens.append(_Token("text", template[pos:]))
    return tokens


class _Parser:
    """Recursive-descent parser over the token stream."""

    def __init__(self, tokens: list[_Token]) -> None:
        self._tokens = tokens
        self._pos = 0
        self._open: list[str] = []
        self.errors: list[str] = []

    def parse(self) -> tuple[Node, ...]:
        return self._nodes(until=None)

    def _nodes(self, until: Optional[str]) -> tuple[Node, ...]:
        nodes: list[Node] = []
        while self._pos < len(self._tokens):
            token = self._tokens[self._pos]
            self._pos += 1
            if token.kind == "text":
                nodes.append(Text(token.value))
            elif token.kind == "var":
                nodes.append(Variable(token.value))
            elif token.kind == "open":
                nodes.append(self._block(token))
            elif token.value == until:
                return tuple(nodes)
            elif token.value in self._open:
                # Closes an outer block: this one was never closed
                self.errors.append(f"Unclosed {{{{#{until}}}}} block")
                self._pos -= 1
                return tuple(nodes)
            else:
                self.errors.append(f"Unexpected {{{{/{token.value}}}}} tag")
        if until is not None:
            self.errors.append(f"Unclosed {{{{#{until}}}}} block")
        return tuple(nodes)

    def _block(self, token: _Token) -> Node:
        self._open.append(token.value)
        try:
            children = self._nodes(until=token.value)
        finally:
            self._open.pop()
        if token.value == CONDITIONAL:
            if not token.args:
                self.errors.append("Missing condition in {{#if}} block")
            name = token.args[0] if token.args else ""
            return Conditional(name=name, children=children)
        return FunctionCall(name=token.value, args=token.args, children=children)


@lru_cache(maxsize=128)
def _parse(template: str) -> tuple[tuple[Node, ...], tuple[str, ...]]:
    parser = _Parser(_tokenize(template))
    nodes = parser.parse()
    return nodes, tuple(parser.errors)


def _is_truthy(value: Any) -> bool:
    return bool(value) and str(value).strip() != ""


def _stringify(value: Any) -> str:
    return str(value) if value else ""


class TemplateEngine:
    """Renders and validates story-string templates."""

    def __init__(
        self, functions: Optional[Mapping[str, TemplateFunction]] = None
    ) -> None:
        self._functions: dict[str, TemplateFunction] = {}
        for name, fn in (functions or {}).items():
            self.register(name, fn)

    def register(self, name: str, fn: TemplateFunction) -> None:
        """Register a custom block function ``fn(content, *args, variables)``."""
        if name == CONDITIONAL:
            raise ConfigurationError("'if' is reserved for conditional blocks")
        self._functions[name] = fn

    @property
    def functions(self) -> dict[str, TemplateFunction]:
        return dict(self._functions)

    def parse(self, template: str) -> list[Node]:
        nodes, _ = _parse(template)
        return list(nodes)

    def render(
        self,
        template: str,
        variables: Mapping[str, Any],
        functions: Optional[Mapping[str, TemplateFunction]] = None,
    ) -> str:
        nodes, _ = _parse(template)
        merged = {**self._functions, **(functions or {})}
        return self._render_nodes(nodes, variables, merged)

    def validate(
        self,
        template: str,
        variables: Mapping[str, Any],
        functions: Optional[Mapping[str, TemplateFunction]] = None,
    ) -> TemplateValidation:
        nodes, parse_errors = _parse(template)
        merged = {**self._functions, **(functions or {})}
        errors = list(parse_errors)
        self._check_nodes(nodes, variables, merged, errors)
        unique = list(dict.fromkeys(errors))
        return TemplateValidation(valid=not unique, errors=unique)

    def _render_nodes(
        self,
        nodes: tuple[Node, ...],
        variables: Mapping[str, Any],
        functions: Mapping[str, TemplateFunction],
    ) -> str:
        parts: list[str] = []
        for node in nodes:
            if isinstance(node, Text):
                parts.append(node.value)
            elif isinstance(node, Variable):
                parts.append(_stringify(variables.get(node.name)))
            elif isinstance(node, Conditional):
                if _is_truthy(variables.get(node.name)):
                    parts.append(
                        self._render_nodes(node.children, variables, functions)
                    )
            else:
                fn = functions.get(node.name)
                if fn is None:
                    logger.debug("Unregistered template function: %s", node.name)
                    continue
                content = self._render_nodes(node.children, variables, functions)
                parts.append(_stringify(fn(content, *node.args, variables)))
        return "".join(parts)

    def _check_nodes(
        self,
        nodes: tuple[Node, ...],
        variables: Mapping[str, Any],
        functions: Mapping[str, TemplateFunction],
        errors: list[str],
    ) -> None:
        for node in nodes:
            if isinstance(node, Variable):
                if node.name not in variables:
                    errors.append(f"Unknown variable: {{{{{node.name}}}}}")
            elif isinstance(node, Conditional):
                self._check_nodes(node.children, variables, functions, errors)
            elif isinstance(node, FunctionCall):
                if node.name not in functions:
                    errors.append(f"Unknown custom function: {{{{#{node.name}}}}}")
                self._check_nodes(node.children, variables, functions, errors)
