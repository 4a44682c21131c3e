"""HTTP API for mailgate.

Provides a FastAPI-based interface for:
- Proposing, confirming, canceling and completing dangerous actions
- Gate checks for single actions and batches of tool calls
- Caching list results and resolving numbered follow-ups
- Health reporting
"""

from mailgate.web.app import create_app

__all__ = ["create_app"]
