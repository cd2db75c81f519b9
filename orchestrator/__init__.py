"""Command line orchestration for booking workflows."""
