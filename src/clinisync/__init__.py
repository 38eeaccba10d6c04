"""Local-first clinical-data sync engine."""

__version__ = "0.1.0"
