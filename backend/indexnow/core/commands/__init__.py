"""Operator commands runnable with ``python -m``."""
