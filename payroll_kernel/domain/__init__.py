"""Pure domain layer: DTOs, snapshot value object, identifiers, workflows, clock."""
