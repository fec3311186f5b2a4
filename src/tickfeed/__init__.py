"""
tickfeed - resilient streaming client for a tick feed over a websocket.

Connects, authenticates, subscribes to one channel and forwards the decoded
tick stream to a presenter, keeping the connection alive with heartbeats and
reconnecting when the server allows it.
"""

__version__ = "1.0.0"
__author__ = "tickfeed maintainers"
