"""XMRT Core — telemetry (structured logging)."""
