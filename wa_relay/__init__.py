"""Relay between a browser dashboard and the WhatsApp Cloud API."""
