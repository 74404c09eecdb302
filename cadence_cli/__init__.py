"""Cadence - jittered recurring message dispatch to chat recipients."""

__app_name__ = "cadence"
__version__ = "0.1.0"
