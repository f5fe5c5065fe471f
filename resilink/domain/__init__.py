"""Domain layer: value objects, state records, events and collaborator interfaces."""
