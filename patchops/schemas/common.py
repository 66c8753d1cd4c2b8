"""
Shared schema bases.

Requests accept camelCase keys; responses serialize with PascalCase keys.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel, to_pascal


class CamelModel(BaseModel):
    """Request model accepting camelCase (or snake_case) keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PascalModel(BaseModel):
    """Response model serialized with PascalCase keys."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)
