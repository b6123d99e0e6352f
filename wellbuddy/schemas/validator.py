import json
from pathlib import Path
from typing import Any, Dict, List, Literal

import jsonschema

SchemaName = Literal["intent", "agent_response", "goal_suggestions"]


def _load_document(name: str) -> Dict[str, Any]:
    schema_path = Path(__file__).with_name(f"{name}.schema.json")
    with schema_path.open("r", encoding="utf-8") as f:
        return json.load(f)


_documents = {name: _load_document(name) for name in ("intent", "agent_response", "goal_suggestions")}

_compiled_schemas = {name: jsonschema.Draft7Validator(doc["schema"]) for name, doc in _documents.items()}


def get_schema(name: SchemaName) -> Dict[str, Any]:
    """JSON schema handed to the structured-generation capability."""
    return _documents[name]["schema"]


def schema_title(name: SchemaName) -> str:
    return str(_documents[name]["name"])


def schema_errors(name: SchemaName, data: Any) -> List[str]:
    validator = _compiled_schemas[name]
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    return [f"{'/'.join(map(str, err.path)) or '<root>'} {err.message}" for err in errors]
