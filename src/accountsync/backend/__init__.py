"""Backend transports."""

from accountsync.backend.http import EventStreamListener, HttpAccountBackend

__all__ = ["EventStreamListener", "HttpAccountBackend"]
