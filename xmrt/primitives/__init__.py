"""XMRT Core — shared primitives."""

from xmrt.primitives.common import XMRTBaseModel, new_id, utc_now

__all__ = ["XMRTBaseModel", "new_id", "utc_now"]
