"""Atrium: agent orchestration and retrieval core for a personal assistant."""
