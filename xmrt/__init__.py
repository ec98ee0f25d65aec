"""
XMRT Core — ecosystem integration core.

Service registry, data-flow coordination and lifecycle management for the
XMRT backend services.
"""

__version__ = "1.0.0"
