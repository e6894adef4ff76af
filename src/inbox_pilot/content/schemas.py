"""Pydantic models validating structured phase outputs."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StrategyOutput(BaseModel):
    """Research phase result."""

    model_config = ConfigDict(extra="allow")

    topic: str = Field(min_length=1)
    angle: str = ""
    target_audience: str = ""
    key_points: list[str] = Field(min_length=1)
    sources: list[str] = Field(default_factory=list)


class OutlineSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    heading: str = Field(min_length=1)
    points: list[str] = Field(default_factory=list)


class StructureOutput(BaseModel):
    """Outline phase result."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(min_length=1)
    sections: list[OutlineSection] = Field(min_length=1)


SCHEMAS_BY_ID: dict[str, type[BaseModel]] = {
    "strategy": StrategyOutput,
    "structure": StructureOutput,
}
