"""Poll Avtech temperature sensors over HTTP and store their readings in PostgreSQL."""

__version__ = "0.1.0"