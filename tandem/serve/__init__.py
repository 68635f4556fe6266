"""Coordinator process serving playback state to clients."""
