"""Privacy preference Pydantic schemas."""

from pydantic import Field

from pledgerank.schemas.common import CamelModel


class PreferenceRequest(CamelModel):
    reveal_amount: bool = False
    reveal_name: bool = False
    custom_display_name: str | None = None


class PreferenceResponse(CamelModel):
    reveal_amount: bool
    reveal_name: bool
    custom_display_name: str | None = None
    privacy_score: int = Field(ge=0, le=100)
