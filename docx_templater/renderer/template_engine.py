"""Template engine adapter: helper table plus execution of the ``{{ }}`` dialect."""
from __future__ import annotations

from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

import jinja2
from jinja2 import ChainableUndefined, Environment

from docx_templater.errors import ExecutionError, InvalidFunctionError, TemplateError, TemplateSyntaxError
from docx_templater.renderer.go_template import (
    BLOCK_END,
    BLOCK_START,
    COMMENT_END,
    COMMENT_START,
    VARIABLE_END,
    VARIABLE_START,
    CompiledTemplate,
    compile_template,
)
from docx_templater.renderer.tag_scanner import OPEN_DELIMITER
from docx_templater.renderer.template_functions import (
    BUILTIN_FUNCTIONS,
    format_output,
    go_range,
    go_trim,
    remove_sentinels,
    truth,
    wrap_function,
)
from docx_templater.utils.logger import get_logger

LOGGER = get_logger(__name__)

HelperFunction = Callable[..., Any]

# Process-wide helpers copied into every new document handle.
DEFAULT_FUNCTIONS: Dict[str, HelperFunction] = {}


def validate_function(name: str, function: Any) -> None:
    """Reject helper names that are not identifiers and values that cannot be called."""
    if not isinstance(name, str) or not name.isidentifier():
        raise InvalidFunctionError(
            f"invalid function name {name!r}",
            suggestions=["Function names must be identifiers (letters, digits and underscores)"],
        )
    if not callable(function):
        raise InvalidFunctionError(f"value for {name!r} is not a function")


def register_default_function(name: str, function: HelperFunction) -> None:
    """Add a helper to the table every new document handle starts from."""
    validate_function(name, function)
    DEFAULT_FUNCTIONS[name] = function


class _DialectEnvironment(Environment):
    """Field access only ever looks up mapping keys or sequence indices."""

    def getitem(self, obj: Any, argument: Any) -> Any:
        try:
            return obj[argument]
        except (AttributeError, TypeError, LookupError):
            return self.undefined(obj=obj, name=argument)


def build_environment() -> Environment:
    environment = _DialectEnvironment(
        block_start_string=BLOCK_START,
        block_end_string=BLOCK_END,
        variable_start_string=VARIABLE_START,
        variable_end_string=VARIABLE_END,
        comment_start_string=COMMENT_START,
        comment_end_string=COMMENT_END,
        autoescape=False,
        keep_trailing_newline=True,
        undefined=ChainableUndefined,
        finalize=format_output,
        extensions=["jinja2.ext.loopcontrols"],
    )
    environment.globals.update(go_range=go_range, go_trim=go_trim, go_truth=truth)
    return environment


_ENVIRONMENT = build_environment()


class TemplateEngine:
    """Executes templates against normalised data with a fixed helper table."""

    def __init__(self, functions: Optional[Mapping[str, HelperFunction]] = None) -> None:
        self._functions: Dict[str, HelperFunction] = dict(DEFAULT_FUNCTIONS)
        for name, function in (functions or {}).items():
            self.register(name, function)

    def register(self, name: str, function: HelperFunction) -> None:
        validate_function(name, function)
        self._functions[name] = function

    def function_names(self) -> FrozenSet[str]:
        return frozenset(BUILTIN_FUNCTIONS) | frozenset(self._functions)

    def compile(self, text: str) -> CompiledTemplate:
        return compile_template(text, self.function_names())

    def execute(self, text: str, data: Any) -> str:
        """Run ``text`` as a template against ``data`` and return the output."""
        if OPEN_DELIMITER not in text:
            return text

        compiled = self.compile(text)
        LOGGER.debug("Compiled %d characters of template text into %d literal(s)", len(text), len(compiled.constants))
        try:
            template = _ENVIRONMENT.from_string(compiled.source)
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateSyntaxError(f"failed to compile template: {exc.message}", cause=exc) from exc

        reached: List[int] = []

        def go_at(index: int) -> str:
            reached.append(index)
            return ""

        context = {
            "dot_0": data,
            "funcs": self._callable_table(),
            "consts": compiled.constants,
            "go_at": go_at,
        }
        try:
            rendered = template.render(context)
        except TemplateError as exc:
            self._attribute(exc, compiled, reached)
            raise
        except jinja2.TemplateError as exc:
            error = ExecutionError(f"template execution failed: {exc}", cause=exc)
            raise self._attribute(error, compiled, reached) from exc
        except (TypeError, ValueError, LookupError, AttributeError) as exc:
            error = ExecutionError(f"template execution failed: {exc}", cause=exc)
            raise self._attribute(error, compiled, reached) from exc
        return remove_sentinels(rendered)

    @staticmethod
    def _attribute(error: TemplateError, compiled: CompiledTemplate, reached: List[int]) -> TemplateError:
        """Name the last action reached before ``error`` unless it already names one."""
        if error.placeholder is None and reached:
            error.with_placeholder(compiled.actions[reached[-1]])
        return error

    def _callable_table(self) -> Dict[str, HelperFunction]:
        table = {**BUILTIN_FUNCTIONS, **self._functions}
        return {name: wrap_function(name, function) for name, function in table.items()}
