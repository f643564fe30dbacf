"""Core: session, errors, data model, failure policy."""
