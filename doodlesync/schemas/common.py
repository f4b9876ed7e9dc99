from datetime import datetime
from typing import Annotated, Any

from pydantic import AliasChoices, BeforeValidator, Field

from doodlesync.utils.timestamps import parse_timestamp


# Accepts fractional or whole-second ISO-8601 strings and BSON datetimes.
Timestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]


def record_id() -> Any:
    """Primary key field readable from either `id` (realtime rows) or `_id` (Mongo documents)."""
    return Field(validation_alias=AliasChoices("id", "_id"))
