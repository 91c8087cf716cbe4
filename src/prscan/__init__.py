"""Supply-chain risk triage for npm dependency changes."""

__version__ = "0.1.0"
