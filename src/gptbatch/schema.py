"""
Structured-output schema descriptions for shard requests.
"""

from __future__ import annotations

import copy
import typing as t

from pydantic import BaseModel


@t.runtime_checkable
class SchemaDescribable(t.Protocol):
    """
    Anything able to describe the JSON schema of a structured answer.

    Implementations expose a name (sent as ``json_schema.name``) and the
    schema itself.
    """

    def schema_name(self) -> str: ...

    def json_schema(self) -> dict[str, t.Any]: ...


class PydanticSchema:
    """
    Describe a pydantic model class as a strict JSON schema.

    Parameters
    ----------
    model : type[BaseModel]
        Model describing the expected answer.
    name : str | None, optional
        Schema name override. Defaults to the model class name.
    """

    def __init__(self, model: type[BaseModel], *, name: str | None = None) -> None:
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            raise TypeError("model must be a pydantic BaseModel subclass")
        self._model = model
        self._name = name or model.__name__

    def schema_name(self) -> str:
        return self._name

    def json_schema(self) -> dict[str, t.Any]:
        return strict_schema(self._model.model_json_schema())


def strict_schema(schema: dict[str, t.Any]) -> dict[str, t.Any]:
    """
    Return a copy of ``schema`` suitable for ``strict`` structured outputs.

    Every object schema, including ``$defs`` entries, forbids additional
    properties and requires all of its properties.

    Parameters
    ----------
    schema : dict[str, typing.Any]
        Input JSON schema.

    Returns
    -------
    dict[str, typing.Any]
        Tightened schema.
    """
    tightened = copy.deepcopy(schema)
    _tighten(tightened)
    return tightened


def _tighten(node: t.Any) -> None:
    if isinstance(node, list):
        for item in node:
            _tighten(item)
        return
    if not isinstance(node, dict):
        return
    if node.get("type") == "object" and "properties" in node:
        node["additionalProperties"] = False
        node["required"] = list(node["properties"].keys())
    for value in node.values():
        _tighten(value)


def as_describable(value: SchemaDescribable | type[BaseModel]) -> SchemaDescribable:
    """Wrap pydantic model classes; pass describable objects through."""
    if isinstance(value, type) and issubclass(value, BaseModel):
        return PydanticSchema(value)
    if isinstance(value, SchemaDescribable):
        return value
    raise TypeError(
        f"expected a pydantic model class or a SchemaDescribable, got {type(value).__name__}"
    )


def build_response_format(describable: SchemaDescribable) -> dict[str, t.Any]:
    """
    Build the ``response_format`` field enforcing a named strict schema.

    Parameters
    ----------
    describable : SchemaDescribable
        Source of the schema name and body.

    Returns
    -------
    dict[str, typing.Any]
        ``{"type": "json_schema", "json_schema": {...}}`` payload.
    """
    return {
        "type": "json_schema",
        "json_schema": {
            "name": describable.schema_name(),
            "strict": True,
            "schema": describable.json_schema(),
        },
    }
