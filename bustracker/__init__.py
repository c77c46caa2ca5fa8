"""Bus Tracker - commuter bus tracking backend."""

__version__ = "1.0.0"
