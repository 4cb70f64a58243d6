from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Liveness response payload."""

    status: str = Field(default="healthy", description="Service liveness status")
    service: str = Field(..., description="Service name")
    time: str = Field(..., description="Server time (RFC 3339)")


class ProcessResponse(BaseModel):
    """Result of a successful processing run."""

    message: str = Field(default="Processing completed")
    status: str = Field(default="success")
