"""convoy - one Claude CLI process per conversation, streamed as typed events."""

from __future__ import annotations

from convoy.config import ConvoySettings, RequestOptions
from convoy.service import Capability, ConvoyService

__all__ = ["Capability", "ConvoyService", "ConvoySettings", "RequestOptions"]
