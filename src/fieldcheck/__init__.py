"""FieldCheck: validation orchestration for forms and records."""

__version__ = "0.1.0"
