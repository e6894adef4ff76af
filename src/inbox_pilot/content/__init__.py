"""Checkpointed multi-phase content generation."""
