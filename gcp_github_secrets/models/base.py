"""Base model configuration for configuration records and cloud resources."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Model(BaseModel):
    """Immutable record used for configuration and resource state."""

    model_config = ConfigDict(frozen=True)


class ApiModel(BaseModel):
    """Google API payload with camelCase keys on the wire.

    Unknown fields are kept so that read-modify-write cycles (IAM policies)
    send back everything the API returned.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_api(self) -> dict[str, object]:
        """Serialize to the camelCase JSON body expected by Google APIs."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
