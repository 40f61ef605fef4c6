"""Adapters: persistence, hashing, subprocess execution and content loading."""
