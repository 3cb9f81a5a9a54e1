"""Builtin functions and value formatting of the ``{{ }}`` template dialect.

The dialect follows Go's ``text/template`` package, so the builtins keep
its names and semantics: ``and``/``or`` return one of their operands,
``print`` only inserts spaces between non-string operands, ``printf`` takes
Go formatting verbs and so on.
"""
from __future__ import annotations

import functools
import json
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

from jinja2 import Undefined

from docx_templater.errors import ExecutionError, TemplateError

NO_VALUE = "<no value>"
NIL_VALUE = "<nil>"
SENTINELS = (NO_VALUE, NIL_VALUE)

_WHITESPACE = " \t\r\n"


# ----------------------------------------------------------------------
# Value formatting


def is_missing(value: Any) -> bool:
    return value is None or isinstance(value, Undefined)


def truth(value: Any) -> bool:
    """Go truthiness: zero values, nil and empty collections are false."""
    if isinstance(value, Undefined):
        return False
    return bool(value)


def format_float(value: float) -> str:
    if value != value:
        return "NaN"
    if value in (float("inf"), float("-inf")):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def format_value(value: Any) -> str:
    """Format ``value`` the way ``%v`` does."""
    if isinstance(value, Undefined):
        return NO_VALUE
    if value is None:
        return NIL_VALUE
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format_float(value)
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        items = " ".join(f"{format_value(key)}:{format_value(value[key])}" for key in sorted(value, key=str))
        return f"map[{items}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(format_value(item) for item in value) + "]"
    return str(value)


def format_output(value: Any) -> str:
    """Format an action result for the document; absent values become empty."""
    if is_missing(value):
        return ""
    return format_value(value)


def type_name(value: Any) -> str:
    if value is None or isinstance(value, Undefined):
        return NIL_VALUE
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "map[string]interface {}"
    if isinstance(value, (list, tuple)):
        return "[]interface {}"
    return type(value).__name__


def remove_sentinels(text: str) -> str:
    """Drop the markers the dialect prints for absent values."""
    for sentinel in SENTINELS:
        text = text.replace(sentinel, "")
    return text


# ----------------------------------------------------------------------
# Runtime helpers referenced by compiled templates


def go_range(value: Any) -> List[Tuple[Any, Any]]:
    """Return ``(key, element)`` pairs for a ``range`` action."""
    if is_missing(value):
        return []
    if isinstance(value, Mapping):
        return [(key, value[key]) for key in sorted(value, key=str)]
    if isinstance(value, (list, tuple)):
        return list(enumerate(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return [(index, index) for index in range(value)]
    raise ExecutionError(f"range can't iterate over {format_value(value)}")


def go_trim(value: Any, left: bool, right: bool) -> str:
    """Format an output value and strip the sides marked with a trim marker."""
    text = format_output(value)
    if left:
        text = text.lstrip(_WHITESPACE)
    if right:
        text = text.rstrip(_WHITESPACE)
    return text


# ----------------------------------------------------------------------
# Builtins


def _and(first: Any, *rest: Any) -> Any:
    for value in (first, *rest):
        if not truth(value):
            return value
    return value


def _or(first: Any, *rest: Any) -> Any:
    for value in (first, *rest):
        if truth(value):
            return value
    return value


def _not(value: Any) -> bool:
    return not truth(value)


def _len(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, bytes, Mapping, list, tuple)):
        return len(value)
    raise TypeError(f"len of type {type_name(value)}")


def _index(item: Any, *indices: Any) -> Any:
    for key in indices:
        if item is None:
            return None
        if isinstance(item, Mapping):
            item = item.get(key if isinstance(key, str) else str(key))
        elif isinstance(item, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise TypeError(f"cannot index slice/array with type {type_name(key)}")
            if key < 0 or key >= len(item):
                raise IndexError(f"index out of range: {key}")
            item = ord(item[key]) if isinstance(item, str) else item[key]
        else:
            raise TypeError(f"can't index item of type {type_name(item)}")
    return item


def _slice(item: Any, *indices: Any) -> Any:
    if not isinstance(item, (list, tuple, str)):
        raise TypeError(f"can't slice item of type {type_name(item)}")
    if len(indices) > (2 if isinstance(item, str) else 3):
        raise TypeError(f"too many slice indexes: {len(indices)}")
    bounds = [int(index) for index in indices]
    start = bounds[0] if len(bounds) > 0 else 0
    stop = bounds[1] if len(bounds) > 1 else len(item)
    if not 0 <= start <= stop <= len(item):
        raise IndexError(f"invalid slice index: {start} > {stop}")
    return item[start:stop]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _ordered(left: Any, right: Any) -> Tuple[Any, Any]:
    if _is_number(left) and _is_number(right):
        return left, right
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    raise TypeError("incompatible types for comparison")


def _eq(first: Any, *others: Any) -> bool:
    if not others:
        raise TypeError("missing argument for comparison")
    return any(first == other for other in others)


def _ne(left: Any, right: Any) -> bool:
    return left != right


def _lt(left: Any, right: Any) -> bool:
    left, right = _ordered(left, right)
    return left < right


def _le(left: Any, right: Any) -> bool:
    left, right = _ordered(left, right)
    return left <= right


def _gt(left: Any, right: Any) -> bool:
    left, right = _ordered(left, right)
    return left > right


def _ge(left: Any, right: Any) -> bool:
    left, right = _ordered(left, right)
    return left >= right


def go_sprint(*args: Any) -> str:
    """Spaces are added between operands when neither is a string."""
    parts: List[str] = []
    previous_is_string = True
    for position, value in enumerate(args):
        is_string = isinstance(value, str)
        if position > 0 and not is_string and not previous_is_string:
            parts.append(" ")
        parts.append(format_value(value))
        previous_is_string = is_string
    return "".join(parts)


def go_sprintln(*args: Any) -> str:
    return " ".join(format_value(value) for value in args) + "\n"


_VERB_PATTERN = re.compile(r"%([-+# 0]*)(\d+|\*)?(\.(\d+|\*)?)?([a-zA-Z%])")


def _bad_verb(verb: str, value: Any) -> str:
    return f"%!{verb}({type_name(value)}={format_value(value)})"


def _quote(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return "'" + chr(value) + "'"
    return json.dumps(value if isinstance(value, str) else format_value(value), ensure_ascii=False)


def _format_verb(verb: str, flags: str, width: Optional[int], precision: Optional[int], value: Any) -> str:
    left_align = "-" in flags
    width_spec = str(width) if width is not None else ""
    align = "<" if left_align else ""

    if verb in "vsqT":
        if verb == "v":
            text = format_value(value)
        elif verb == "s":
            if is_missing(value) or _is_number(value) or isinstance(value, bool):
                return _bad_verb(verb, value)
            text = value.decode("utf-8") if isinstance(value, bytes) else format_value(value)
        elif verb == "q":
            text = _quote(value)
        else:
            text = type_name(value)
        if precision is not None and verb == "s":
            text = text[:precision]
        return format(text, f"{align or '>'}{width_spec}")

    if verb == "t":
        if not isinstance(value, bool):
            return _bad_verb(verb, value)
        return format("true" if value else "false", f"{align or '>'}{width_spec}")

    if verb == "c":
        if not isinstance(value, int) or isinstance(value, bool):
            return _bad_verb(verb, value)
        return format(chr(value), f"{align or '>'}{width_spec}")

    if verb == "U":
        if not isinstance(value, int) or isinstance(value, bool):
            return _bad_verb(verb, value)
        return format(f"U+{value:04X}", f"{align or '>'}{width_spec}")

    sign = "+" if "+" in flags else (" " if " " in flags else "")
    zero = "0" if "0" in flags and not left_align else ""
    alternate = "#" if "#" in flags else ""

    if verb in "dxXob":
        if isinstance(value, str) and verb in "xX":
            text = value.encode("utf-8").hex()
            return format(text.upper() if verb == "X" else text, f"{align or '>'}{width_spec}")
        if not isinstance(value, int) or isinstance(value, bool):
            return _bad_verb(verb, value)
        return format(value, f"{align}{sign}{alternate}{zero}{width_spec}{verb}")

    if verb in "feEgGF":
        if not _is_number(value):
            return _bad_verb(verb, value)
        if verb in "gG" and precision is None:
            text = format_float(float(value))
            if sign and not text.startswith("-"):
                text = sign + text
            return format(text, f"{align or '>'}{width_spec}")
        precision_spec = f".{precision}" if precision is not None else ".6"
        python_verb = "f" if verb == "F" else verb
        return format(float(value), f"{align}{sign}{zero}{width_spec}{precision_spec}{python_verb}")

    return _bad_verb(verb, value)


def go_sprintf(template: str, *args: Any) -> str:
    """Format ``args`` according to a Go-style format string."""
    output: List[str] = []
    position = 0
    arg_index = 0

    def next_int() -> Optional[int]:
        nonlocal arg_index
        if arg_index >= len(args):
            return None
        value = args[arg_index]
        arg_index += 1
        return int(value)

    for match in _VERB_PATTERN.finditer(template):
        output.append(template[position:match.start()])
        position = match.end()
        flags, width_text, has_precision, precision_text, verb = match.groups()
        if verb == "%":
            output.append("%")
            continue
        width = next_int() if width_text == "*" else (int(width_text) if width_text else None)
        precision: Optional[int] = None
        if has_precision:
            precision = next_int() if precision_text == "*" else int(precision_text or 0)
        if arg_index >= len(args):
            output.append(f"%!{verb}(MISSING)")
            continue
        value = args[arg_index]
        arg_index += 1
        output.append(_format_verb(verb, flags, width, precision, value))
    output.append(template[position:])

    if arg_index < len(args):
        extra = ", ".join(f"{type_name(value)}={format_value(value)}" for value in args[arg_index:])
        output.append(f"%!(EXTRA {extra})")
    return "".join(output)


def _eval_args(args: Tuple[Any, ...]) -> str:
    if len(args) == 1 and isinstance(args[0], str):
        return args[0]
    return go_sprint(*args)


def _html(*args: Any) -> str:
    text = _eval_args(args)
    replacements = (("&", "&amp;"), ("'", "&#39;"), ("<", "&lt;"), (">", "&gt;"), ('"', "&#34;"), ("\x00", "\ufffd"))
    for char, entity in replacements:
        text = text.replace(char, entity)
    return text


_JS_REPLACEMENTS = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "<": "\\u003C",
    ">": "\\u003E",
    "&": "\\u0026",
    "=": "\\u003D",
}


def _js(*args: Any) -> str:
    pieces: List[str] = []
    for char in _eval_args(args):
        if char in _JS_REPLACEMENTS:
            pieces.append(_JS_REPLACEMENTS[char])
        elif ord(char) < 0x20:
            pieces.append(f"\\u{ord(char):04X}")
        else:
            pieces.append(char)
    return "".join(pieces)


def _urlquery(*args: Any) -> str:
    return quote_plus(_eval_args(args))


def _call(function: Any, *args: Any) -> Any:
    if not callable(function):
        raise TypeError(f"non-function of type {type_name(function)}")
    return function(*args)


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "and": _and,
    "or": _or,
    "not": _not,
    "len": _len,
    "index": _index,
    "slice": _slice,
    "eq": _eq,
    "ne": _ne,
    "lt": _lt,
    "le": _le,
    "gt": _gt,
    "ge": _ge,
    "print": go_sprint,
    "printf": go_sprintf,
    "println": go_sprintln,
    "html": _html,
    "js": _js,
    "urlquery": _urlquery,
    "call": _call,
}


def wrap_function(name: str, function: Callable[..., Any]) -> Callable[..., Any]:
    """Adapt a helper for use from a compiled template.

    Undefined arguments reach the helper as ``None`` and any failure inside
    the helper surfaces as an :class:`ExecutionError` naming it.
    """

    @functools.wraps(function)
    def invoke(*args: Any) -> Any:
        args = tuple(None if isinstance(arg, Undefined) else arg for arg in args)
        try:
            return function(*args)
        except TemplateError:
            raise
        except Exception as exc:
            raise ExecutionError(f"error calling {name}: {exc}", cause=exc) from exc

    return invoke