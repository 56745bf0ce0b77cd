"""Outbound message collaborators (SMS, email)."""
