"""
Typed validation of completion output.

Completion text is parsed into either ``Validated`` (carrying the model) or
``Invalid`` (carrying readable error strings). Callers decide what an invalid
result means at their own step boundary.
"""

import json
from dataclasses import dataclass, field
from typing import Generic, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Validated(Generic[ModelT]):
    value: ModelT
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Invalid:
    errors: list[str]
    raw: str = ""
    ok: bool = field(default=False, init=False)


ValidationOutcome = Union[Validated[ModelT], Invalid]


def _format_error(err: dict) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))


def validate_completion(content: str, model: Type[ModelT]) -> "ValidationOutcome[ModelT]":
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError) as e:
        return Invalid(errors=[f"response is not valid JSON: {e}"], raw=content or "")
    if not isinstance(parsed, dict):
        return Invalid(errors=["response must be a JSON object"], raw=content)
    try:
        return Validated(model.model_validate(parsed))
    except ValidationError as e:
        return Invalid(errors=[_format_error(err) for err in e.errors()], raw=content)
