# FILE: codeagent/script/parser.py
"""
Script parser: YAML front matter + turns.

Layout:
    parameters:
      language: python
    autoRunLLMIfPromptAvailable: true
    ---
    system: You are a careful engineer.
    user: Write {{language}} code for {{task}} [[CODE]]
    $set: stage=written
    $if stage == "written"
      then:
        - $echo: done
    -> review(strict=true)
    ---
    user: Summarise [[SUMMARY:temperature=0.2]]

The section before the first separator line (--- or ***) is always the
front matter, possibly empty. Every later section is one turn.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from codeagent.errors import ScriptParseError
from codeagent.script.models import (
    AiPlaceholder,
    CallOverrides,
    ChainTarget,
    ConstrainedChoice,
    ControlFlowBlock,
    ForBlock,
    IfBlock,
    Instruction,
    InstructionKind,
    MatchBlock,
    Message,
    PipeBlock,
    PipeElement,
    Replacement,
    ReplacementKind,
    Role,
    Script,
    ScriptRef,
    Turn,
    WhileBlock,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PATTERNS
# =============================================================================

_SEPARATOR_RE = re.compile(r"^(?:---|\*\*\*)\s*$")
_ROLE_RE = re.compile(r"^([A-Za-z]+):(?:\s+(.*)|\s*)$")
_CHAIN_RE = re.compile(r"^->\s*([\w./-]+)\s*(?:\((.*)\))?\s*$")
_INSTRUCTION_RE = re.compile(r"^\$(\w+)\s*(?:\((.*)\))?\s*(?::\s*(.*))?$", re.DOTALL)
_BLOCK_RE = re.compile(r"^\$(if|while|for|match|pipe)\b:?\s*(.*)$")
_FOR_IN_RE = re.compile(r"^([A-Za-z_]\w*)\s+in\s+(.+)$")
_SCRIPT_REF_RE = re.compile(r"^([\w./-]+)\s*(?:\((.*)\))?$")

PLACEHOLDER_RE = re.compile(r"\[\[([A-Za-z_]\w*)(?::(.*?))?\]\]")
_SCRIPT_REPLACEMENT_RE = re.compile(r"\[\[@(?!\$)([\w./-]+)(?:\((.*?)\))?\]\]")
_INSTRUCTION_REPLACEMENT_RE = re.compile(r"\[\[@\$(\w+)(?:\((.*?)\))?\]\]")
_REGEX_REPLACEMENT_RE = re.compile(
    r"(?<![\w/:.])/((?:\\.|[^/\\\n])+)/([a-z]*):([A-Za-z_][\w.]*)(?::(\w+))?"
)
_PARAM_RE = re.compile(r"""(\w+)\s*[=:]\s*("[^"]*"|'[^']*'|[^,|]*)""")
_OVERRIDE_RE = re.compile(r"""(\w+)=('[^']*'|"[^"]*"|[^\s,|]+)""")

FRONT_MATTER_KEYS = {
    "parameters", "input", "output", "import", "type", "description",
    "autoRunLLMIfPromptAvailable", "autoRun", "prompt", "response_format",
    "metadata", "name",
}

_BODY_LABELS = ("then:", "else:", "do:")


# =============================================================================
# SMALL HELPERS
# =============================================================================

def _unquote(value: str) -> str:
    v = value.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
        return v[1:-1]
    return v


def parse_params(text: Optional[str]) -> Dict[str, str]:
    """`a=1, b="two"` -> {"a": "1", "b": "two"}."""
    if not text:
        return {}
    return {m.group(1): _unquote(m.group(2)) for m in _PARAM_RE.finditer(text)}


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _split_sections(text: str) -> List[List[str]]:
    sections: List[List[str]] = [[]]
    for line in text.splitlines():
        if _SEPARATOR_RE.match(line):
            sections.append([])
        else:
            sections[-1].append(line)
    return sections


# =============================================================================
# MESSAGE MARKUP
# =============================================================================

def _parse_placeholder(
    content: str,
) -> Tuple[Optional[AiPlaceholder], Optional[ConstrainedChoice]]:
    match = PLACEHOLDER_RE.search(content)
    if not match:
        return None, None

    variable = match.group(1)
    params = (match.group(2) or "").strip()

    if params.startswith("|"):
        parts = params.split(":")
        options = tuple(o.strip() for o in parts[0].split("|") if o.strip())
        count = 1
        pick_random = False
        for modifier in parts[1:]:
            modifier = modifier.strip().lower()
            if modifier.isdigit():
                count = max(1, int(modifier))
            elif modifier == "random":
                pick_random = True
        choice = ConstrainedChoice(options=options, count=count, random=pick_random) if options else None
        return AiPlaceholder(variable=variable, markup=match.group(0)), choice

    raw = {m.group(1).lower(): _unquote(m.group(2)) for m in _OVERRIDE_RE.finditer(params)}
    try:
        overrides = CallOverrides(
            model=raw.get("model") or None,
            temperature=float(raw["temperature"]) if "temperature" in raw else None,
            top_p=float(raw.get("top_p", raw.get("topp"))) if ("top_p" in raw or "topp" in raw) else None,
            top_k=int(raw.get("top_k", raw.get("topk"))) if ("top_k" in raw or "topk" in raw) else None,
        )
    except ValueError as e:
        raise ScriptParseError(f"Invalid placeholder parameters '{params}': {e}")
    return AiPlaceholder(variable=variable, overrides=overrides, markup=match.group(0)), None


def _parse_replacements(content: str) -> Tuple[Replacement, ...]:
    found: List[Replacement] = []
    for m in _SCRIPT_REPLACEMENT_RE.finditer(content):
        found.append(Replacement(
            kind=ReplacementKind.SCRIPT,
            markup=m.group(0),
            target=m.group(1),
            params=parse_params(m.group(2)),
        ))
    for m in _INSTRUCTION_REPLACEMENT_RE.finditer(content):
        found.append(Replacement(
            kind=ReplacementKind.INSTRUCTION,
            markup=m.group(0),
            target=m.group(1),
            params=parse_params(m.group(2)),
        ))
    for m in _REGEX_REPLACEMENT_RE.finditer(content):
        found.append(Replacement(
            kind=ReplacementKind.REGEX,
            markup=m.group(0),
            target=m.group(1),
            flags=m.group(2) or "",
            variable=m.group(3),
            group=m.group(4),
        ))
    return tuple(found)


def build_message(role: Role, content: str, allow_immediate: bool = True) -> Message:
    text = content.rstrip()
    immediate = False
    if allow_immediate and text.startswith("#"):
        immediate = True
        text = text[1:].lstrip()
    placeholder, choice = _parse_placeholder(text)
    return Message(
        role=role,
        content=text,
        placeholder=placeholder,
        choice=choice,
        replacements=_parse_replacements(text),
        immediate=immediate,
    )


# =============================================================================
# INSTRUCTIONS / CONTROL FLOW
# =============================================================================

def parse_instruction(text: str, source: Optional[str] = None, line_no: Optional[int] = None) -> Instruction:
    match = _INSTRUCTION_RE.match(text.strip())
    if not match:
        raise ScriptParseError(f"Malformed instruction '{text.strip()}'", source, line_no)

    name, paren, value = match.group(1), match.group(2), match.group(3)
    template_ref = False
    args: Dict[str, str] = {}
    raw = ""

    if paren is not None:
        args = parse_params(paren)
        raw = paren.strip()
    if value is not None:
        raw = value.strip()
        if raw.startswith("?="):
            template_ref = True
            raw = raw[2:].strip()
        args.setdefault("value", _unquote(raw))

    return Instruction(
        name=name,
        kind=InstructionKind.for_name(name),
        args=args,
        raw=raw,
        template_ref=template_ref,
    )


def _parse_pipe_element(text: str, source: Optional[str]) -> PipeElement:
    element = text.strip()
    if element.startswith("$"):
        return parse_instruction(element, source)
    m = _SCRIPT_REF_RE.match(element)
    if not m:
        raise ScriptParseError(f"Malformed pipe element '{element}'", source)
    return ScriptRef(name=m.group(1), params=parse_params(m.group(2)))


def _body_items(lines: List[str]) -> List[str]:
    items: List[str] = []
    for line in lines:
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("- "):
            s = s[2:].strip()
        items.append(s)
    return items


def _parse_block(
    keyword: str,
    header: str,
    body: List[str],
    source: Optional[str],
) -> ControlFlowBlock:
    if keyword == "pipe":
        chain_text = header
        if not chain_text:
            chain_text = " -> ".join(_body_items(body))
        elements = tuple(
            _parse_pipe_element(part, source)
            for part in chain_text.split("->")
            if part.strip()
        )
        return PipeBlock(elements=elements)

    if keyword == "match":
        cases: List[Tuple[str, List[Instruction]]] = []
        default: List[Instruction] = []
        target: Optional[List[Instruction]] = None
        for item in _body_items(body):
            if item.startswith("$"):
                if target is None:
                    raise ScriptParseError(f"Instruction outside case in $match: '{item}'", source)
                target.append(parse_instruction(item, source))
                continue
            label, _, inline = item.partition(":")
            label = label.strip()
            if label.lower().startswith("case "):
                label = label[5:].strip()
            if label.lower() in ("default", "else", "_"):
                target = default
            else:
                target = []
                cases.append((_unquote(label), target))
            if inline.strip().startswith("$"):
                target.append(parse_instruction(inline.strip(), source))
        return MatchBlock(
            expression=header,
            cases=tuple((label, tuple(instrs)) for label, instrs in cases),
            default=tuple(default),
        )

    # if / while / for: optional then:/else:/do: labels
    sections: Dict[str, List[Instruction]] = {"then": [], "else": [], "do": []}
    current = "then" if keyword == "if" else "do"
    for item in _body_items(body):
        label, sep, inline = item.partition(":")
        if sep and label.strip().lower() in ("then", "else", "do") and not item.startswith("$"):
            current = label.strip().lower()
            if inline.strip().startswith("$"):
                sections[current].append(parse_instruction(inline.strip(), source))
            continue
        if item.startswith("$"):
            sections[current].append(parse_instruction(item, source))
        else:
            logger.debug("[parser] ignoring non-instruction line in $%s block: %s", keyword, item)

    if keyword == "if":
        return IfBlock(condition=header, then_body=tuple(sections["then"]), else_body=tuple(sections["else"]))
    if keyword == "while":
        return WhileBlock(condition=header, body=tuple(sections["do"] or sections["then"]))

    body_instrs = tuple(sections["do"] or sections["then"])
    m = _FOR_IN_RE.match(header)
    if m:
        return ForBlock(condition=header, body=body_instrs, variable=m.group(1), iterable=m.group(2).strip())
    return ForBlock(condition=header, body=body_instrs)


# =============================================================================
# TURN PARSER
# =============================================================================

class _TurnBuilder:
    def __init__(self, source: Optional[str]):
        self.source = source
        self.messages: List[Message] = []
        self.instructions: List[Instruction] = []
        self.control_flow: List[ControlFlowBlock] = []
        self.chain: Optional[ChainTarget] = None
        self._role: Optional[Role] = None
        self._lines: List[str] = []
        self._allow_immediate = True

    def start_message(self, role: Role, first: str, allow_immediate: bool = True) -> None:
        self.flush()
        self._role = role
        self._lines = [first] if first else []
        self._allow_immediate = allow_immediate

    def continue_message(self, line: str) -> None:
        if self._role is None:
            self._role = Role.USER
        self._lines.append(line)

    def flush(self) -> None:
        if self._role is not None:
            content = "\n".join(self._lines).strip("\n")
            if content.strip():
                self.messages.append(build_message(self._role, content, self._allow_immediate))
        self._role = None
        self._lines = []

    def build(self) -> Turn:
        self.flush()
        return Turn(
            messages=tuple(self.messages),
            instructions=tuple(self.instructions),
            control_flow=tuple(self.control_flow),
            chain=self.chain,
        )


def _parse_turn(lines: List[str], source: Optional[str]) -> Turn:
    builder = _TurnBuilder(source)
    i = 0
    n = len(lines)
    while i < n:
        line = lines[i]
        stripped = line.strip()
        indent = _indent_of(line)

        if not stripped:
            if builder._role is not None:
                builder.continue_message("")
            i += 1
            continue

        if stripped.startswith("#"):
            i += 1
            continue

        block = _BLOCK_RE.match(stripped)
        if block:
            builder.flush()
            body: List[str] = []
            j = i + 1
            while j < n:
                nxt = lines[j]
                ns = nxt.strip()
                if not ns or _indent_of(nxt) > indent:
                    body.append(nxt)
                elif _indent_of(nxt) == indent and (ns.lower() in _BODY_LABELS or ns.startswith("- ")):
                    body.append(nxt)
                else:
                    break
                j += 1
            builder.control_flow.append(_parse_block(block.group(1), block.group(2).strip(), body, source))
            i = j
            continue

        chain = _CHAIN_RE.match(stripped)
        if chain:
            builder.flush()
            builder.chain = ChainTarget(name=chain.group(1), params=parse_params(chain.group(2)))
            i += 1
            continue

        if stripped.startswith("$"):
            builder.flush()
            builder.instructions.append(parse_instruction(stripped, source, i + 1))
            i += 1
            continue

        role_match = _ROLE_RE.match(stripped)
        role = Role.parse(role_match.group(1)) if role_match else None
        if role is not None:
            rest = (role_match.group(2) or "").strip()
            if rest in ("|", "|-", ">", ">-"):
                block_lines: List[str] = []
                j = i + 1
                while j < n and (not lines[j].strip() or _indent_of(lines[j]) > indent):
                    block_lines.append(lines[j])
                    j += 1
                non_blank = [_indent_of(l) for l in block_lines if l.strip()]
                cut = min(non_blank) if non_blank else 0
                text = "\n".join(l[cut:] if l.strip() else "" for l in block_lines)
                if rest.startswith(">"):
                    text = " ".join(p.strip() for p in text.splitlines() if p.strip())
                builder.start_message(role, text, allow_immediate=False)
                builder.flush()
                i = j
                continue
            builder.start_message(role, rest)
            i += 1
            continue

        builder.continue_message(stripped)
        i += 1

    return builder.build()


# =============================================================================
# FRONT MATTER / ENTRY POINTS
# =============================================================================

def _load_front_matter(text: str, source: Optional[str]) -> Dict[str, Any]:
    if not text.strip():
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ScriptParseError(f"Invalid front matter: {e}", source)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ScriptParseError("Front matter must be a mapping", source)
    return data


def _looks_like_front_matter(text: str) -> bool:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError:
        return False
    return isinstance(data, dict) and any(k in FRONT_MATTER_KEYS for k in data)


def parse_script(text: str, name: str = "inline", source_path: Optional[str] = None) -> Script:
    sections = _split_sections(text or "")

    front_text = "\n".join(sections[0])
    turn_sections = sections[1:]
    if not turn_sections and front_text.strip() and not _looks_like_front_matter(front_text):
        # No separators: the whole text is a single turn
        turn_sections = [sections[0]]
        front_text = ""

    front = _load_front_matter(front_text, source_path)
    params = front.get("parameters") or {}
    if not isinstance(params, dict):
        raise ScriptParseError("'parameters' must be a mapping", source_path)

    imports = front.get("import") or ()
    if isinstance(imports, str):
        imports = (imports,)

    auto_run = front.get("autoRunLLMIfPromptAvailable", front.get("autoRun", True))

    turns = tuple(
        _parse_turn(lines, source_path)
        for lines in turn_sections
        if any(l.strip() for l in lines)
    )

    metadata = {k: v for k, v in front.items() if k not in FRONT_MATTER_KEYS}
    if isinstance(front.get("metadata"), dict):
        metadata.update(front["metadata"])

    inputs = front.get("input") or {}
    outputs = front.get("output") or {}

    script = Script(
        name=str(front.get("name") or name),
        turns=turns,
        parameters=dict(params),
        source_path=source_path,
        auto_run=bool(auto_run),
        description=str(front.get("description") or ""),
        script_type=str(front.get("type") or ""),
        inputs=inputs if isinstance(inputs, dict) else {k: None for k in inputs},
        outputs=outputs if isinstance(outputs, dict) else {k: None for k in outputs},
        imports=tuple(str(i) for i in imports),
        metadata=metadata,
    )
    logger.debug("[parser] parsed script '%s': %d turns", script.name, len(turns))
    return script


def parse_script_file(path: str) -> Script:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ScriptParseError(f"Cannot read script: {e}", str(p))
    name = p.name
    for suffix in (".ai.yaml", ".yaml", ".yml"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return parse_script(text, name=name, source_path=str(p.resolve()))


__all__ = [
    "PLACEHOLDER_RE",
    "parse_params",
    "parse_instruction",
    "build_message",
    "parse_script",
    "parse_script_file",
]
