"""
Models Package - Export all SQLAlchemy models
"""
from autorest.models.exposed_entity import ExposedEntity, FieldPolicy, RowPolicy, EntityKind

__all__ = [
    "ExposedEntity",
    "FieldPolicy",
    "RowPolicy",
    "EntityKind",
]
