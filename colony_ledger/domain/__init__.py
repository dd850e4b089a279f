"""Pure domain layer: clock, DTOs, metadata and threshold rules."""
