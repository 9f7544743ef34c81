"""HTTP API for the runtime manager."""
