"""
Pydantic models for responses read from remote services.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EtcdHealthResponse(BaseModel):
    """
    Body of etcd's ``/health`` endpoint.

    etcd v2 answers ``{"health": "true"}``, some proxies capitalize the key,
    so both spellings are accepted. Anything but the literal string "true"
    counts as unhealthy.
    """

    model_config = ConfigDict(extra="ignore")

    health: str = Field(
        default="",
        validation_alias=AliasChoices("health", "Health"),
        description="Health verdict as reported by etcd",
    )
    reason: str = Field(default="", description="Reason given for an unhealthy verdict")

    @property
    def is_healthy(self) -> bool:
        return self.health == "true"
