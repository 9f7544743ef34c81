"""Runtime manager: versions of the agent runtime binary and its background session."""
__version__ = "1.0.0"
