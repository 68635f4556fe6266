"""Tandem: keep many media players in lockstep through one coordinator."""

__version__ = "0.1.0"
