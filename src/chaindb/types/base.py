"""Reusable, strict base models for configuration values."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StrictBaseModel(BaseModel):
    """
    A strict, immutable pydantic base model.

    Field names are serialized in camel case (`no_drop` becomes `noDrop`),
    while both spellings are accepted on input. This keeps YAML files
    written by hand and JSON written by the tool interchangeable.

    Attribute docstrings become field descriptions in the JSON schema.

    Frozen models are hashable, so they can be used as dictionary keys
    and set members (locators are grouped that way during planning).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
        extra="forbid",
        frozen=True,
        strict=True,
        use_attribute_docstrings=True,
    )

    def copy(self: Self, **kwargs: Any) -> Self:
        """Create a copy of the model with the updated fields that are validated."""
        return self.__class__(**(self.model_dump(exclude_unset=True) | kwargs))
