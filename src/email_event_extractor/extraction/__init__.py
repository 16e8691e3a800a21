"""Event extraction from message text.

Extraction runs in two stages: a cheap screening model decides whether a
message announces an event at all, and a stronger model extracts the events.
"""
