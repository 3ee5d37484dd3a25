"""Cowork: plan and safely execute file tasks inside a workspace sandbox."""

__version__ = "0.1.0"
