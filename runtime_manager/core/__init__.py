"""Core types, runtime invocation and shared infrastructure."""
