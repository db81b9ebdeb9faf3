"""
Message part model.

A message's content is an ordered sequence of typed parts:

- ``text``         -- ``{"type": "text", "text": str}``
- ``image``        -- ``{"type": "image", "image": data-url-or-url, "mimeType"?: str}``
- ``tool-call``    -- ``{"type": "tool-call", "id": str, "name": str, "args": object}``
- ``tool-result``  -- ``{"type": "tool-result", "toolCallId": str, "result": any}``
- ``reasoning``    -- ``{"type": "reasoning", "text": str}``

The dict form is the storage/wire form and is validated with a JSON schema.
Tool arguments and results are opaque JSON values here; each tool validates
its own payloads.

The accumulation helpers are pure: they return a new list and never mutate
their input.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Iterable, Union

import jsonschema

from chatrelay.types import PartValidationError


@dataclass(frozen=True)
class TextPart:
    text: str
    type = "text"


@dataclass(frozen=True)
class ImagePart:
    image: str
    mime_type: str | None = None
    type = "image"


@dataclass(frozen=True)
class ToolCallPart:
    id: str
    name: str
    args: Any
    type = "tool-call"


@dataclass(frozen=True)
class ToolResultPart:
    tool_call_id: str
    result: Any
    type = "tool-result"


@dataclass(frozen=True)
class ReasoningPart:
    text: str
    type = "reasoning"


Part = Union[TextPart, ImagePart, ToolCallPart, ToolResultPart, ReasoningPart]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

def _variant(type_name: str, props: dict, required: list[str]) -> dict:
    return {
        "type": "object",
        "properties": {"type": {"const": type_name}, **props},
        "required": ["type", *required],
        "additionalProperties": False,
    }


PART_SCHEMA: dict = {
    "oneOf": [
        _variant("text", {"text": {"type": "string"}}, ["text"]),
        _variant(
            "image",
            {"image": {"type": "string"}, "mimeType": {"type": "string"}},
            ["image"],
        ),
        _variant(
            "tool-call",
            {"id": {"type": "string"}, "name": {"type": "string"}, "args": {}},
            ["id", "name", "args"],
        ),
        _variant(
            "tool-result",
            {"toolCallId": {"type": "string"}, "result": {}},
            ["toolCallId", "result"],
        ),
        _variant("reasoning", {"text": {"type": "string"}}, ["text"]),
    ]
}

_VALIDATOR = jsonschema.Draft202012Validator(PART_SCHEMA)


# ---------------------------------------------------------------------------
# (De)serialization
# ---------------------------------------------------------------------------

def part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        d: dict[str, Any] = {"type": "image", "image": part.image}
        if part.mime_type is not None:
            d["mimeType"] = part.mime_type
        return d
    if isinstance(part, ToolCallPart):
        return {
            "type": "tool-call",
            "id": part.id,
            "name": part.name,
            "args": copy.deepcopy(part.args),
        }
    if isinstance(part, ToolResultPart):
        return {
            "type": "tool-result",
            "toolCallId": part.tool_call_id,
            "result": copy.deepcopy(part.result),
        }
    if isinstance(part, ReasoningPart):
        return {"type": "reasoning", "text": part.text}
    raise PartValidationError(f"Not a message part: {part!r}")


def part_from_dict(data: Any) -> Part:
    """Validate and build a part.  Raises ``PartValidationError``."""
    error = jsonschema.exceptions.best_match(_VALIDATOR.iter_errors(data))
    if error is not None:
        kind = data.get("type") if isinstance(data, dict) else None
        raise PartValidationError(
            f"Invalid message part (type={kind!r}): {error.message}"
        )

    kind = data["type"]
    if kind == "text":
        return TextPart(text=data["text"])
    if kind == "image":
        return ImagePart(image=data["image"], mime_type=data.get("mimeType"))
    if kind == "tool-call":
        return ToolCallPart(
            id=data["id"], name=data["name"], args=copy.deepcopy(data["args"])
        )
    if kind == "tool-result":
        return ToolResultPart(
            tool_call_id=data["toolCallId"], result=copy.deepcopy(data["result"])
        )
    return ReasoningPart(text=data["text"])


def serialize_parts(parts: Iterable[Part]) -> list[dict[str, Any]]:
    return [part_to_dict(p) for p in parts]


def parse_parts(data: Iterable[Any] | None) -> list[Part]:
    if data is None:
        return []
    return [part_from_dict(d) for d in data]


# ---------------------------------------------------------------------------
# Accumulation helpers
# ---------------------------------------------------------------------------

def append_text(parts: list[Part], delta: str) -> list[Part]:
    """Extend the last part if it is text, else push a new text part."""
    if parts and isinstance(parts[-1], TextPart):
        return [*parts[:-1], TextPart(parts[-1].text + delta)]
    return [*parts, TextPart(delta)]


def merge_reasoning(parts: list[Part], delta: str) -> list[Part]:
    """
    Concatenate *delta* onto the singleton reasoning part.

    The reasoning part is updated in place when it exists, otherwise it is
    inserted at the front of the sequence.
    """
    for i, part in enumerate(parts):
        if isinstance(part, ReasoningPart):
            return [*parts[:i], ReasoningPart(part.text + delta), *parts[i + 1:]]
    return [ReasoningPart(delta), *parts]


def fold_reasoning(parts: list[Part], text: str | None) -> list[Part]:
    """Ensure the reasoning part holds *text* (no-op when *text* is empty)."""
    if not text:
        return list(parts)
    for i, part in enumerate(parts):
        if isinstance(part, ReasoningPart):
            if part.text == text:
                return list(parts)
            return [*parts[:i], ReasoningPart(text), *parts[i + 1:]]
    return [ReasoningPart(text), *parts]


def append_tool_call(parts: list[Part], call_id: str, name: str, args: Any) -> list[Part]:
    return [*parts, ToolCallPart(id=call_id, name=name, args=args)]


def append_tool_result(parts: list[Part], tool_call_id: str, result: Any) -> list[Part]:
    return [*parts, ToolResultPart(tool_call_id=tool_call_id, result=result)]


def parts_text(parts: Iterable[Part]) -> str:
    return "".join(p.text for p in parts if isinstance(p, TextPart))


def reasoning_text(parts: Iterable[Part]) -> str | None:
    for p in parts:
        if isinstance(p, ReasoningPart):
            return p.text
    return None


def project_tool_calls(parts: Iterable[Part]) -> list[dict[str, Any]]:
    return [
        {"id": p.id, "name": p.name, "args": p.args}
        for p in parts
        if isinstance(p, ToolCallPart)
    ]


def project_tool_outputs(parts: Iterable[Part]) -> list[dict[str, Any]]:
    return [
        {"toolCallId": p.tool_call_id, "result": p.result}
        for p in parts
        if isinstance(p, ToolResultPart)
    ]


def orphan_tool_results(parts: Iterable[Part]) -> list[ToolResultPart]:
    """Tool results with no earlier tool call of the same id."""
    seen: set[str] = set()
    orphans: list[ToolResultPart] = []
    for p in parts:
        if isinstance(p, ToolCallPart):
            seen.add(p.id)
        elif isinstance(p, ToolResultPart) and p.tool_call_id not in seen:
            orphans.append(p)
    return orphans
