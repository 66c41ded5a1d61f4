"""Test-case generation: prompts, model calls, JSON recovery, normalization."""
