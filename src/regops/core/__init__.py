"""Core primitives: errors, logging, settings, records, conditions and the store."""
