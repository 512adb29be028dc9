"""CLI command modules."""

from cody_routines.cli.commands import listing, run, start, validate

__all__ = ["listing", "run", "start", "validate"]
