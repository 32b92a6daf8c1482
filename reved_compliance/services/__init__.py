"""Compliance services: audit, anonymization, retention and consent."""
