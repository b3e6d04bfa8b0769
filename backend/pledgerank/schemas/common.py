"""Shared schema bits: camelCase wire format and decimal amounts."""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


def format_amount(value: Decimal) -> str:
    return format(value.normalize(), "f")


# Amounts travel as strings so no precision is lost to floats
Amount = Annotated[Decimal, PlainSerializer(format_amount, return_type=str, when_used="json")]


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, emits camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    code: str
    detail: str
    retryable: bool = False
    debug_id: str | None = None
