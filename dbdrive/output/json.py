"""JSON output rendering for plans, schemas and type catalogs."""
import json  # pylint: disable=import-self,redefined-builtin
from typing import Any

from pydantic import BaseModel

from dbdrive.core.type_selector import ColumnTypeSelector


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def render_json(value: Any) -> str:
    """Render a model, or a container of models, as indented JSON."""
    return json.dumps(_to_jsonable(value), indent=2, default=str)


def render_types_json(selector: ColumnTypeSelector) -> str:
    """Render a type catalog; dynamic descriptions are rendered with default parameters."""
    groups = []
    for group in selector.type_suggestions:
        suggestions = []
        for suggestion in group.suggestions:
            suggestions.append({
                "name": suggestion.name,
                "description": suggestion.describe([p.default for p in suggestion.parameters]),
                "parameters": [p.model_dump(exclude_none=True) for p in suggestion.parameters],
            })
        groups.append({"name": group.name, "suggestions": suggestions})
    return json.dumps({"type": selector.type, "type_suggestions": groups}, indent=2)
