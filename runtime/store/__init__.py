"""
Storage abstractions for the voice relay runtime.

Includes:
- SessionStore: per-connection conversation state (in-memory, idle sweep,
  optional transcript archive on teardown)
"""
