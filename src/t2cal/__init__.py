"""t2cal: one-way sync of scheduled tasks to a CalDAV calendar."""

__version__ = "0.1.0"
