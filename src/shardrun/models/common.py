from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ReportModel(BaseModel):
    """Base for models persisted in reports: camelCase on the wire."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}


class StatusTransition(BaseModel):
    model_config = {"populate_by_name": True}

    from_status: str = Field(alias="from")
    to_status: str = Field(alias="to")
    timestamp: str
