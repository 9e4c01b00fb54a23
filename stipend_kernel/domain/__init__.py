"""Pure domain layer: value objects, period arithmetic, balance math, workflow tables."""
