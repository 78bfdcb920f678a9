"""Core engine: models, configuration, planning, execution, persistence."""
