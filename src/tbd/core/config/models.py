"""
Configuration data models for tbd.

These models define the structure of ``.tbd/config.yml``, with validation
and type safety via Pydantic.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Conservative subset of git's ref name rules
_REF_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")


def validate_ref_name(value: str, kind: str) -> str:
    """
    Check that ``value`` is safe to use as a git branch or remote name.

    Raises:
        ValueError: If the name is empty or could not be used in a refspec.
    """
    if (
        not _REF_NAME_RE.match(value)
        or ".." in value
        or "//" in value
        or value.endswith(("/", ".", ".lock"))
    ):
        raise ValueError(f"Invalid {kind} name: {value!r}")
    return value


class SyncConfig(BaseModel):
    """
    Where and how issues are replicated.
    """
    branch: str = Field(
        default="tbd-sync",
        description="Name of the sync branch holding the issue data"
    )
    remote: str = Field(
        default="origin",
        description="Git remote the sync branch is pushed to"
    )
    max_push_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Push attempts before giving up when the remote keeps moving"
    )
    retry_delay_ms: int = Field(
        default=50,
        ge=0,
        description="Delay before the first retry after a network failure"
    )
    retry_backoff: float = Field(
        default=1.5,
        ge=1.0,
        description="Multiplier applied to the delay after each failed attempt"
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        return validate_ref_name(v, "branch")

    @field_validator("remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        if "/" in v:
            raise ValueError(f"Invalid remote name: {v!r}")
        return validate_ref_name(v, "remote")


class TbdConfig(BaseModel):
    """
    Complete tbd configuration.

    Loaded from defaults, then ``.tbd/config.yml``, then ``TBD_*`` environment
    variables.
    """
    model_config = ConfigDict(extra="ignore")

    sync: SyncConfig = Field(default_factory=SyncConfig)
