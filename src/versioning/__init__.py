"""Resource versions, version constraints and version selection."""
