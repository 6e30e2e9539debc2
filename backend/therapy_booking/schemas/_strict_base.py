"""Strict schema baselines and shared field types."""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from ..core.timezone_utils import normalize_time_string


class StrictModel(BaseModel):
    """Neutral strict base for response DTOs."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)


# "9:00", "09:00:00" and "9:00 AM" all arrive as "09:00".
TimeOfDay = Annotated[str, BeforeValidator(normalize_time_string)]

Money = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]
