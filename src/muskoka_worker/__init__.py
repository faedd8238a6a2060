"""Queue-driven state-transition worker."""

__version__ = "0.1.0"
