"""Base model configuration for configuration files."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Frozen model that rejects unknown keys so typos in config files fail loudly."""

    model_config = ConfigDict(frozen=True, extra="forbid")
