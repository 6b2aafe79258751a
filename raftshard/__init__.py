"""Raft consensus peer, persistent storage and clerks for a sharded key/value service."""

__version__ = "0.1.0"