"""Aide: a personal-assistant task orchestrator."""
