"""Headless listening client."""
