from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base model that can be built from dataclass attributes."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())
