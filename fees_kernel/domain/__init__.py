"""Pure domain layer: value objects, validation and message composition."""
