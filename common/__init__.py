"""Shared infrastructure: API client, exceptions, logging and the run lock."""
