"""XMRT Core — systems."""
