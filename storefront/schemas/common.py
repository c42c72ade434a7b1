from pydantic import BaseModel, Field


class PaginationMeta(BaseModel):
    total: int = Field(description="Rows matching the filters")
    limit: int
    offset: int
    count: int = Field(description="Rows in this page")
    has_next: bool


class FieldIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorBodyOut(BaseModel):
    code: str = Field(description="Stable machine-readable code, e.g. bad_request or bad_gateway")
    message: str
    request_id: str
    path: str
    details: list[FieldIssueOut] | None = None


class ErrorOut(BaseModel):
    """Envelope returned by every non-2xx response."""

    error: ErrorBodyOut
