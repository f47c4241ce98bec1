"""Roomy - compatibility ranking and chat memory for student housing."""

__version__ = "1.0.0"
