"""Inbound Invoice Ninja webhooks."""
