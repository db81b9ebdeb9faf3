from __future__ import annotations

import jsonschema

from chatrelay.tools.base import Tool, normalize_schema


class ToolValidator:
    """Checks model-supplied tool arguments against the tool's JSON schema."""

    @staticmethod
    def validate(tool: Tool, arguments: object) -> tuple[bool, str | None]:
        if not isinstance(arguments, dict):
            return False, f"arguments for {tool.name} must be an object"

        validator_cls = jsonschema.validators.validator_for(tool.parameters)
        validator = validator_cls(normalize_schema(tool.parameters))
        problems = []
        for err in validator.iter_errors(arguments):
            where = ".".join(str(p) for p in err.absolute_path)
            problems.append(f"{where}: {err.message}" if where else err.message)
        if problems:
            return False, "; ".join(sorted(problems))
        return True, None
