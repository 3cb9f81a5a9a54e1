"""Compile the ``{{ }}`` action dialect into Jinja2 template source.

Templates are written in the dialect of Go's ``text/template`` (field paths
on ``.``, pipelines, ``if``/``range``/``with`` blocks, variables).  Rather
than interpreting that dialect directly, each template is parsed here and
translated into a Jinja2 template whose delimiters are private control
characters.  XML 1.0 forbids those characters, so no document text can ever
be mistaken for Jinja syntax.

Names used by the generated source:

* ``dot_0`` is the root data value (``$``), ``dot_N`` the value of ``.``
  inside the N-th nested ``range``/``with`` and ``key_N`` the matching
  range key.
* ``go_vars`` is a Jinja namespace holding declared variables, so that an
  assignment inside a loop is visible after it.
* ``funcs`` maps function names to callables and ``consts`` holds every
  literal of the template.
* ``go_at(i)`` marks the start of the i-th action, so a runtime failure can
  be traced back to the tag that caused it.
"""
from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from docx_templater.errors import invalid_function, syntax_error, unmatched_end
from docx_templater.renderer.tag_scanner import CLOSE_DELIMITER, OPEN_DELIMITER, TRIM_MARKER

BLOCK_START = "\x02%"
BLOCK_END = "%\x03"
VARIABLE_START = "\x02{"
VARIABLE_END = "}\x03"
COMMENT_START = "\x02#"
COMMENT_END = "#\x03"
RESERVED_CHARACTERS = ("\x02", "\x03")

KEYWORDS = frozenset({"if", "else", "end", "range", "with", "break", "continue", "define", "template", "block"})
LITERAL_IDENTIFIERS = {"true": True, "false": False, "nil": None}

_TRIM_SPACE = " \t\r\n"
_COMMENT_OPEN = "/*"
_COMMENT_CLOSE = "*/"

_TOKEN_SPEC = (
    ("STRING", r'"(?:[^"\\\n]|\\.)*"'),
    ("RAW", r"`[^`]*`"),
    ("CHAR", r"'(?:[^'\\\n]|\\.)+'"),
    ("DECLARE", r":="),
    ("ASSIGN", r"="),
    ("PIPE", r"\|"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
    (
        "NUMBER",
        r"[+-]?(?:0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+"
        r"|(?:\d[\d_]*(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)",
    ),
    ("FIELD", r"\.[A-Za-z_][A-Za-z0-9_]*"),
    ("DOT", r"\."),
    ("VARIABLE", r"\$[A-Za-z0-9_]*"),
    ("IDENT", r"[A-Za-z_][A-Za-z0-9_]*"),
)
_TOKEN_PATTERN = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC))


# ----------------------------------------------------------------------
# Lexing


@dataclass(slots=True)
class Token:
    kind: str
    text: str
    space_before: bool = False


@dataclass(slots=True)
class RawAction:
    """One ``{{ ... }}`` occurrence with its lexed tokens."""

    source: str
    tokens: List[Token] = field(default_factory=list)
    trim_left: bool = False
    trim_right: bool = False
    is_comment: bool = False


Segment = Union[str, RawAction]


def _lex_action(text: str, open_pos: int, start: int) -> Tuple[List[Token], int, bool]:
    tokens: List[Token] = []
    index = start
    space = False
    length = len(text)
    while True:
        if index >= length:
            raise syntax_error("unclosed action", placeholder=text[open_pos:open_pos + 60])
        char = text[index]
        if char in _TRIM_SPACE:
            space = True
            index += 1
            continue
        if space and text.startswith(TRIM_MARKER + CLOSE_DELIMITER, index):
            return tokens, index + len(TRIM_MARKER + CLOSE_DELIMITER), True
        if text.startswith(CLOSE_DELIMITER, index):
            return tokens, index + len(CLOSE_DELIMITER), False
        match = _TOKEN_PATTERN.match(text, index)
        if match is None:
            raise syntax_error(f"unexpected {char!r} in action", placeholder=text[open_pos:index + 1])
        tokens.append(Token(match.lastgroup or "", match.group(), space))
        space = False
        index = match.end()


def _lex_comment(text: str, open_pos: int, start: int) -> Tuple[int, bool]:
    close = text.find(_COMMENT_CLOSE, start + len(_COMMENT_OPEN))
    if close < 0:
        raise syntax_error("unclosed comment", placeholder=text[open_pos:open_pos + 60])
    index = close + len(_COMMENT_CLOSE)
    if text.startswith(CLOSE_DELIMITER, index):
        return index + len(CLOSE_DELIMITER), False
    stripped = index
    while stripped < len(text) and text[stripped] in _TRIM_SPACE:
        stripped += 1
    if stripped > index and text.startswith(TRIM_MARKER + CLOSE_DELIMITER, stripped):
        return stripped + len(TRIM_MARKER + CLOSE_DELIMITER), True
    raise syntax_error("comment ends before closing delimiter", placeholder=text[open_pos:index])


def split_template(text: str) -> List[Segment]:
    """Split ``text`` into literal strings and lexed actions, applying trim markers."""
    segments: List[Segment] = []
    position = 0
    while True:
        open_pos = text.find(OPEN_DELIMITER, position)
        if open_pos < 0:
            segments.append(text[position:])
            break
        segments.append(text[position:open_pos])

        start = open_pos + len(OPEN_DELIMITER)
        trim_left = (
            text.startswith(TRIM_MARKER, start)
            and start + 1 < len(text)
            and text[start + 1] in _TRIM_SPACE
        )
        if trim_left:
            start += 2

        if text.startswith(_COMMENT_OPEN, start):
            end, trim_right = _lex_comment(text, open_pos, start)
            action = RawAction(text[open_pos:end], [], trim_left, trim_right, is_comment=True)
        else:
            tokens, end, trim_right = _lex_action(text, open_pos, start)
            action = RawAction(text[open_pos:end], tokens, trim_left, trim_right)
        segments.append(action)
        position = end

    for index, segment in enumerate(segments):
        if not isinstance(segment, RawAction):
            continue
        if segment.trim_left and isinstance(segments[index - 1], str):
            segments[index - 1] = segments[index - 1].rstrip(_TRIM_SPACE)
        if segment.trim_right and index + 1 < len(segments) and isinstance(segments[index + 1], str):
            segments[index + 1] = segments[index + 1].lstrip(_TRIM_SPACE)
    return [segment for segment in segments if segment != ""]


# ----------------------------------------------------------------------
# Syntax tree


@dataclass(slots=True)
class LiteralNode:
    value: Any


@dataclass(slots=True)
class DotNode:
    pass


@dataclass(slots=True)
class VariableNode:
    name: str


@dataclass(slots=True)
class FunctionNode:
    name: str


@dataclass(slots=True)
class FieldNode:
    """Field chain applied to ``base``; a ``None`` base means the current dot."""

    base: Optional["Operand"]
    names: List[str]


@dataclass(slots=True)
class CommandNode:
    args: List["Operand"]


@dataclass(slots=True)
class PipelineNode:
    commands: List[CommandNode]
    decl: List[str] = field(default_factory=list)
    is_assign: bool = False


Operand = Union[LiteralNode, DotNode, VariableNode, FunctionNode, FieldNode, PipelineNode]


@dataclass(slots=True)
class TextNode:
    text: str


@dataclass(slots=True)
class ActionNode:
    pipeline: PipelineNode
    action: RawAction


@dataclass(slots=True)
class ConditionalNode:
    """``if`` or ``with`` block; ``else if``/``else with`` nest in ``else_body``."""

    is_with: bool
    pipeline: PipelineNode
    body: List["Node"]
    else_body: Optional[List["Node"]]
    action: RawAction


@dataclass(slots=True)
class RangeNode:
    pipeline: PipelineNode
    body: List["Node"]
    else_body: Optional[List["Node"]]
    action: RawAction


@dataclass(slots=True)
class LoopControlNode:
    keyword: str
    action: RawAction


Node = Union[TextNode, ActionNode, ConditionalNode, RangeNode, LoopControlNode]


@dataclass(slots=True)
class _Terminator:
    keyword: str
    action: RawAction
    continuation: Optional[Tuple[str, PipelineNode]] = None


# ----------------------------------------------------------------------
# Parsing


class _TokenStream:
    def __init__(self, tokens: List[Token]) -> None:
        self._tokens = tokens
        self._index = 0

    def peek(self) -> Optional[Token]:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def next(self) -> Optional[Token]:
        token = self.peek()
        if token is not None:
            self._index += 1
        return token


def _parse_number(text: str) -> Union[int, float]:
    cleaned = text.replace("_", "")
    digits = cleaned.lstrip("+-").lower()
    if digits.startswith(("0x", "0o", "0b")):
        return int(cleaned, 0)
    if "." in digits or "e" in digits:
        return float(cleaned)
    if len(digits) > 1 and digits.startswith("0"):
        return int(cleaned, 8)
    return int(cleaned)


class Parser:
    """Builds the syntax tree of a split template."""

    def __init__(self, segments: List[Segment], function_names: FrozenSet[str]) -> None:
        self._segments = segments
        self._position = 0
        self._functions = function_names

    def parse(self) -> List[Node]:
        nodes, terminator = self._parse_list()
        if terminator is not None:
            if terminator.keyword == "end":
                raise unmatched_end(terminator.action.source)
            raise syntax_error("unexpected {{else}}", placeholder=terminator.action.source)
        return nodes

    # ------------------------------------------------------------------
    # Block structure
    def _parse_list(self) -> Tuple[List[Node], Optional[_Terminator]]:
        nodes: List[Node] = []
        while self._position < len(self._segments):
            segment = self._segments[self._position]
            self._position += 1
            if isinstance(segment, str):
                nodes.append(TextNode(segment))
                continue
            if segment.is_comment:
                continue

            tokens = segment.tokens
            if not tokens:
                raise syntax_error("missing value for command", placeholder=segment.source)
            head = tokens[0]
            keyword = head.text if head.kind == "IDENT" and head.text in KEYWORDS else None

            if keyword is None:
                nodes.append(ActionNode(self._pipeline(tokens, segment, max_decl=1), segment))
            elif keyword == "end":
                self._expect_bare(tokens, segment)
                return nodes, _Terminator("end", segment)
            elif keyword == "else":
                return nodes, self._else_terminator(tokens, segment)
            elif keyword in ("if", "with"):
                pipeline = self._pipeline(tokens[1:], segment, max_decl=1)
                nodes.append(self._parse_conditional(keyword, pipeline, segment))
            elif keyword == "range":
                nodes.append(self._parse_range(segment))
            elif keyword in ("break", "continue"):
                self._expect_bare(tokens, segment)
                nodes.append(LoopControlNode(keyword, segment))
            else:
                raise syntax_error(f"{{{{{keyword}}}}} actions are not supported", placeholder=segment.source)
        return nodes, None

    def _else_terminator(self, tokens: List[Token], segment: RawAction) -> _Terminator:
        if len(tokens) == 1:
            return _Terminator("else", segment)
        follower = tokens[1]
        if follower.kind == "IDENT" and follower.text in ("if", "with"):
            pipeline = self._pipeline(tokens[2:], segment, max_decl=1)
            return _Terminator("else", segment, (follower.text, pipeline))
        raise syntax_error(f"unexpected {follower.text!r} in else", placeholder=segment.source)

    def _parse_conditional(self, keyword: str, pipeline: PipelineNode, segment: RawAction) -> ConditionalNode:
        body, terminator = self._parse_list()
        if terminator is None:
            raise syntax_error(f"unexpected EOF: unclosed {{{{{keyword}}}}}", placeholder=segment.source)
        else_body: Optional[List[Node]] = None
        if terminator.keyword == "else":
            if terminator.continuation is not None:
                next_keyword, next_pipeline = terminator.continuation
                else_body = [self._parse_conditional(next_keyword, next_pipeline, terminator.action)]
            else:
                else_body = self._parse_else_body(keyword, segment)
        return ConditionalNode(keyword == "with", pipeline, body, else_body, segment)

    def _parse_range(self, segment: RawAction) -> RangeNode:
        pipeline = self._pipeline(segment.tokens[1:], segment, max_decl=2)
        body, terminator = self._parse_list()
        if terminator is None:
            raise syntax_error("unexpected EOF: unclosed {{range}}", placeholder=segment.source)
        else_body: Optional[List[Node]] = None
        if terminator.keyword == "else":
            if terminator.continuation is not None:
                raise syntax_error("{{else if}} is not allowed in {{range}}", placeholder=terminator.action.source)
            else_body = self._parse_else_body("range", segment)
        return RangeNode(pipeline, body, else_body, segment)

    def _parse_else_body(self, keyword: str, segment: RawAction) -> List[Node]:
        else_body, terminator = self._parse_list()
        if terminator is None:
            raise syntax_error(f"unexpected EOF: unclosed {{{{{keyword}}}}}", placeholder=segment.source)
        if terminator.keyword != "end":
            raise syntax_error("expected {{end}}; found {{else}}", placeholder=terminator.action.source)
        return else_body

    @staticmethod
    def _expect_bare(tokens: List[Token], segment: RawAction) -> None:
        if len(tokens) > 1:
            raise syntax_error(f"unexpected {tokens[1].text!r} in {tokens[0].text}", placeholder=segment.source)

    # ------------------------------------------------------------------
    # Pipelines
    def _pipeline(self, tokens: List[Token], segment: RawAction, max_decl: int) -> PipelineNode:
        decl: List[str] = []
        is_assign = False
        kinds = [token.kind for token in tokens[:4]]
        if kinds[:2] in (["VARIABLE", "DECLARE"], ["VARIABLE", "ASSIGN"]):
            decl = [tokens[0].text]
            is_assign = kinds[1] == "ASSIGN"
            tokens = tokens[2:]
        elif kinds[:3] == ["VARIABLE", "COMMA", "VARIABLE"] and kinds[3:] in (["DECLARE"], ["ASSIGN"]):
            decl = [tokens[0].text, tokens[2].text]
            is_assign = kinds[3] == "ASSIGN"
            tokens = tokens[4:]
        if len(decl) > max_decl:
            raise syntax_error("too many declarations in command", placeholder=segment.source)
        if "$" in decl:
            raise syntax_error("cannot declare or assign $", placeholder=segment.source)

        stream = _TokenStream(tokens)
        pipeline = self._parse_commands(stream, segment, inside_paren=False)
        pipeline.decl = decl
        pipeline.is_assign = is_assign
        return pipeline

    def _parse_commands(self, stream: _TokenStream, segment: RawAction, inside_paren: bool) -> PipelineNode:
        commands: List[CommandNode] = []
        while True:
            commands.append(self._parse_command(stream, segment))
            token = stream.peek()
            if token is None:
                if inside_paren:
                    raise syntax_error("unclosed left paren", placeholder=segment.source)
                break
            if token.kind == "PIPE":
                stream.next()
                continue
            if token.kind == "RPAREN" and inside_paren:
                break
            raise syntax_error(f"unexpected {token.text!r} in command", placeholder=segment.source)
        return PipelineNode(commands)

    def _parse_command(self, stream: _TokenStream, segment: RawAction) -> CommandNode:
        args: List[Operand] = []
        while True:
            token = stream.peek()
            if token is None or token.kind in ("PIPE", "RPAREN"):
                break
            args.append(self._parse_operand(stream, segment))
        if not args:
            raise syntax_error("missing value for command", placeholder=segment.source)
        return CommandNode(args)

    def _parse_operand(self, stream: _TokenStream, segment: RawAction) -> Operand:
        term = self._parse_term(stream, segment)
        while True:
            token = stream.peek()
            if token is None or token.kind != "FIELD" or token.space_before:
                return term
            if isinstance(term, (LiteralNode, FunctionNode)):
                raise syntax_error(f"unexpected {token.text} after term", placeholder=segment.source)
            stream.next()
            name = token.text[1:]
            if isinstance(term, FieldNode):
                term.names.append(name)
            else:
                term = FieldNode(term, [name])

    def _parse_term(self, stream: _TokenStream, segment: RawAction) -> Operand:
        token = stream.next()
        assert token is not None
        kind = token.kind
        try:
            if kind == "STRING":
                return LiteralNode(ast.literal_eval(token.text))
            if kind == "RAW":
                return LiteralNode(token.text[1:-1])
            if kind == "CHAR":
                value = ast.literal_eval(token.text)
                if len(value) != 1:
                    raise ValueError(value)
                return LiteralNode(ord(value))
            if kind == "NUMBER":
                return LiteralNode(_parse_number(token.text))
        except (ValueError, SyntaxError) as exc:
            raise syntax_error(f"bad literal {token.text}", placeholder=segment.source).with_cause(exc)
        if kind == "DOT":
            return DotNode()
        if kind == "FIELD":
            return FieldNode(None, [token.text[1:]])
        if kind == "VARIABLE":
            return VariableNode(token.text)
        if kind == "IDENT":
            if token.text in LITERAL_IDENTIFIERS:
                return LiteralNode(LITERAL_IDENTIFIERS[token.text])
            if token.text in KEYWORDS:
                raise syntax_error(f"unexpected keyword {token.text!r} in operand", placeholder=segment.source)
            if token.text not in self._functions:
                raise invalid_function(token.text, placeholder=segment.source)
            return FunctionNode(token.text)
        if kind == "LPAREN":
            pipeline = self._parse_commands(stream, segment, inside_paren=True)
            stream.next()
            return pipeline
        raise syntax_error(f"unexpected {token.text!r} in operand", placeholder=segment.source)


# ----------------------------------------------------------------------
# Translation


@dataclass(slots=True)
class CompiledTemplate:
    """Jinja2 source plus the literal pool it indexes into.

    ``actions`` holds the tag text of every action in emission order; the
    index passed to ``go_at`` points into it.
    """

    source: str
    constants: List[Any]
    actions: List[str] = field(default_factory=list)


class Translator:
    """Emits Jinja2 source for a parsed syntax tree."""

    def __init__(self) -> None:
        self._out: List[str] = []
        self._constants: List[Any] = []
        self._actions: List[str] = []
        self._scopes: List[Dict[str, str]] = [{"$": "dot_0"}]
        self._dots: List[str] = ["dot_0"]
        self._loops = 0
        self._slots = 0

    def translate(self, nodes: List[Node]) -> CompiledTemplate:
        self._statement("set go_vars = namespace()")
        self._nodes(nodes)
        return CompiledTemplate("".join(self._out), self._constants, self._actions)

    # ------------------------------------------------------------------
    # Emission
    def _statement(self, code: str) -> None:
        self._out.append(f"{BLOCK_START} {code} {BLOCK_END}")

    def _mark(self, action: RawAction) -> None:
        self._actions.append(action.source)
        self._output(f"go_at({len(self._actions) - 1})")

    def _output(self, expression: str) -> None:
        self._out.append(f"{VARIABLE_START} {expression} {VARIABLE_END}")

    def _nodes(self, nodes: List[Node]) -> None:
        for node in nodes:
            if isinstance(node, TextNode):
                self._out.append(node.text)
            elif isinstance(node, ActionNode):
                self._action(node)
            elif isinstance(node, ConditionalNode):
                self._conditional(node)
            elif isinstance(node, RangeNode):
                self._range(node)
            else:
                self._loop_control(node)

    def _action(self, node: ActionNode) -> None:
        self._mark(node.action)
        value = self._pipeline(node.pipeline, node.action)
        if node.pipeline.decl:
            self._declare(node.pipeline, value, node.action)
            return
        if node.action.trim_left or node.action.trim_right:
            left = "true" if node.action.trim_left else "false"
            right = "true" if node.action.trim_right else "false"
            self._output(f"go_trim({value}, {left}, {right})")
        else:
            self._output(value)

    def _conditional(self, node: ConditionalNode) -> None:
        self._mark(node.action)
        self._scopes.append({})
        value = self._pipeline(node.pipeline, node.action)
        if node.pipeline.decl:
            self._declare(node.pipeline, value, node.action)
            value = self._resolve(node.pipeline.decl[0], node.action)

        if node.is_with:
            dot = f"dot_{len(self._dots)}"
            self._statement(f"with {dot} = {value}")
            self._statement(f"if go_truth({dot})")
            self._dots.append(dot)
            self._nodes(node.body)
            self._dots.pop()
        else:
            self._statement(f"if go_truth({value})")
            self._nodes(node.body)

        if node.else_body is not None:
            self._statement("else")
            self._nodes(node.else_body)
        self._statement("endif")
        if node.is_with:
            self._statement("endwith")
        self._scopes.pop()

    def _range(self, node: RangeNode) -> None:
        self._mark(node.action)
        value = self._pipeline(node.pipeline, node.action)
        depth = len(self._dots)
        dot, key = f"dot_{depth}", f"key_{depth}"
        self._statement(f"for {key}, {dot} in go_range({value})")

        self._scopes.append({})
        decl = node.pipeline.decl
        targets = [key, dot] if len(decl) == 2 else [dot]
        for name, target in zip(decl, targets):
            if node.pipeline.is_assign:
                self._statement(f"set {self._resolve(name, node.action)} = {target}")
            else:
                self._scopes[-1][name] = target

        self._dots.append(dot)
        self._loops += 1
        self._nodes(node.body)
        self._loops -= 1
        self._dots.pop()
        self._scopes.pop()

        if node.else_body is not None:
            self._statement("else")
            self._nodes(node.else_body)
        self._statement("endfor")

    def _loop_control(self, node: LoopControlNode) -> None:
        if not self._loops:
            raise syntax_error(f"{{{{{node.keyword}}}}} outside {{{{range}}}}", placeholder=node.action.source)
        self._statement(node.keyword)

    # ------------------------------------------------------------------
    # Variables
    def _declare(self, pipeline: PipelineNode, value: str, action: RawAction) -> None:
        name = pipeline.decl[0]
        if pipeline.is_assign:
            slot = self._resolve(name, action)
        else:
            self._slots += 1
            slot = f"go_vars.v{self._slots}"
            self._scopes[-1][name] = slot
        self._statement(f"set {slot} = {value}")

    def _resolve(self, name: str, action: RawAction) -> str:
        for scope in reversed(self._scopes):
            if name in scope:
                return scope[name]
        raise syntax_error(f"undefined variable {name!r}", placeholder=action.source)

    # ------------------------------------------------------------------
    # Expressions
    def _pipeline(self, pipeline: PipelineNode, action: RawAction) -> str:
        result: Optional[str] = None
        for command in pipeline.commands:
            result = self._command(command, result, action)
        assert result is not None
        return result

    def _command(self, command: CommandNode, piped: Optional[str], action: RawAction) -> str:
        head, *rest = command.args
        if isinstance(head, FunctionNode):
            args = [self._operand(arg, action) for arg in rest]
            if piped is not None:
                args.append(piped)
            return f"funcs[{head.name!r}]({', '.join(args)})"
        if rest or piped is not None:
            raise syntax_error("can't give argument to non-function", placeholder=action.source)
        return self._operand(head, action)

    def _operand(self, node: Operand, action: RawAction) -> str:
        if isinstance(node, LiteralNode):
            self._constants.append(node.value)
            return f"consts[{len(self._constants) - 1}]"
        if isinstance(node, DotNode):
            return self._dots[-1]
        if isinstance(node, VariableNode):
            return self._resolve(node.name, action)
        if isinstance(node, FunctionNode):
            return f"funcs[{node.name!r}]()"
        if isinstance(node, PipelineNode):
            return f"({self._pipeline(node, action)})"
        base = self._dots[-1] if node.base is None else self._operand(node.base, action)
        return base + "".join(f"[{name!r}]" for name in node.names)


def compile_template(text: str, function_names: FrozenSet[str]) -> CompiledTemplate:
    """Parse ``text`` and translate it to Jinja2 source."""
    if any(char in text for char in RESERVED_CHARACTERS):
        raise syntax_error("template text contains reserved control characters")
    segments = split_template(text)
    nodes = Parser(segments, function_names).parse()
    return Translator().translate(nodes)
