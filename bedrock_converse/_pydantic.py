# Copyright (c) Microsoft. All rights reserved.

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["ConverseBaseModel", "Probability"]

Probability = Annotated[float, Field(ge=0.0, le=1.0)]


class ConverseBaseModel(BaseModel):
    """Base class for all pydantic models in the package."""

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        validate_assignment=True,
    )
