"""Scheduled jobs triggered over HTTP."""
