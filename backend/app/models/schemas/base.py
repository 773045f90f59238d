"""
Shared Pydantic base for request/response bodies.
"""
from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Accepts both the camelCase wire names and the Python field names."""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class ORMModel(BaseModel):
    """Response built directly from an ORM instance."""
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())
