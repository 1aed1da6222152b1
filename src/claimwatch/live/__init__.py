"""Live streaming session for claim detection."""

from claimwatch.live.session import LiveSession, LiveSessionManager, SessionState

__all__ = ["LiveSession", "LiveSessionManager", "SessionState"]
