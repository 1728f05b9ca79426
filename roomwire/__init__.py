"""
roomwire - realtime rooms, channels and reconnecting clients.

Server side, a room definition is bound to a per-process runtime that tracks
sessions, broadcasts to channels and restores itself after the host suspends
and resumes the process. Client side, a reconnecting client queues outbound
messages while offline and keeps the link alive with ping/pong frames.
"""

__version__ = "0.3.0"
