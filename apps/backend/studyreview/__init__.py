"""Spaced-repetition and programmed review scheduling backend."""
