"""
Assembles streaming tool-call deltas into complete ToolCall objects.

OpenAI-style streams (OpenAI itself and OpenRouter) send a tool call as a
series of fragments keyed by ``index``: the first carries the id and name, the
rest carry pieces of the JSON argument string.  Anthropic streams
``input_json_delta`` fragments the same way.

Arguments are parsed once the call is finished.  A call whose arguments are
not a JSON object is dropped and the failure is recorded in ``errors``.
"""

from __future__ import annotations

import json
import uuid

from chatrelay.llm.types import RawToolDelta, ToolCall


class ToolCallAssembler:
    """Buffers raw tool-call deltas and emits finished ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[str] = []

    @property
    def pending(self) -> bool:
        return bool(self._buf)

    def feed(self, delta: RawToolDelta) -> list[ToolCall]:
        """
        Feed a single ``RawToolDelta``.

        Returns the calls completed by this delta (empty unless ``done``).
        """
        buf = self._buf.setdefault(
            delta.call_index, {"id": None, "name": "", "args": ""}
        )
        if delta.id and not buf["id"]:
            buf["id"] = delta.id
        buf["name"] += delta.name_delta
        buf["args"] += delta.args_delta

        if delta.done:
            call = self._finalize(delta.call_index)
            return [call] if call else []
        return []

    def flush(self) -> list[ToolCall]:
        """Finalize every open buffer, in index order.  Used at step end."""
        calls: list[ToolCall] = []
        for idx in sorted(self._buf):
            call = self._finalize(idx)
            if call:
                calls.append(call)
        return calls

    def reset(self) -> None:
        self._buf.clear()
        self.errors.clear()

    def _finalize(self, idx: int) -> ToolCall | None:
        buf = self._buf.pop(idx, None)
        if buf is None:
            return None

        raw_args = buf["args"].strip() or "{}"
        try:
            args = json.loads(raw_args)
        except json.JSONDecodeError as exc:
            self.errors.append(f"tool_call_json_parse_failed idx={idx} err={exc}")
            return None
        if not isinstance(args, dict):
            self.errors.append(f"tool_call_args_not_object idx={idx}")
            return None

        call_id = buf["id"] or f"call_{uuid.uuid4().hex[:12]}"
        return ToolCall(id=call_id, name=buf["name"].strip(), arguments=args)
