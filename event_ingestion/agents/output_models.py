"""
Pydantic schemas for structured LLM outputs.

Used by the categorizer via Instructor or Anthropic SDK structured output.
"""

from pydantic import BaseModel, Field


class CategorizationOutput(BaseModel):
    """Categories picked by the model for one event."""

    categories: list[str] = Field(
        description="1-3 category names from the allowed list, most relevant first"
    )
    scores: dict[str, float] | None = Field(
        default=None,
        description="Confidence 0.0-1.0 per returned category",
    )
