"""RelationshipRecord dataclass for GraphLedger."""

from dataclasses import dataclass

from .exceptions import ValidationError

RELATIONSHIP_FIELDS = ("id", "type", "start_node_id", "end_node_id")


@dataclass(frozen=True)
class RelationshipRecord:
    """Typed, directed edge between two graph nodes (immutable).

    Identifiers are opaque strings. Nothing is validated here: empty
    values are stored as given, and the endpoint nodes are not required
    to exist anywhere.
    """
    id: str
    type: str  # 'OWNS' | 'FOLLOWS' | ... (free-form label)
    start_node_id: str
    end_node_id: str

    def get_id(self) -> str:
        return self.id

    def get_type(self) -> str:
        return self.type

    def get_start_node_id(self) -> str:
        return self.start_node_id

    def get_end_node_id(self) -> str:
        return self.end_node_id

    def endpoints(self) -> tuple[str, str]:
        """Return (start_node_id, end_node_id)."""
        return (self.start_node_id, self.end_node_id)

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in RELATIONSHIP_FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> "RelationshipRecord":
        """Build a record from its dictionary form.

        Args:
            data: Mapping with id, type, start_node_id and end_node_id

        Returns:
            RelationshipRecord

        Raises:
            ValidationError: If a field is missing or is not a string
        """
        missing = [name for name in RELATIONSHIP_FIELDS if name not in data]
        if missing:
            raise ValidationError(
                f"Relationship is missing fields: {', '.join(missing)}",
                details={"missing": missing},
            )
        for name in RELATIONSHIP_FIELDS:
            if not isinstance(data[name], str):
                raise ValidationError(
                    f"Relationship field {name!r} must be a string",
                    details={"field": name},
                )
        return cls(**{name: data[name] for name in RELATIONSHIP_FIELDS})
