"""
Runtime package for the voice relay server.

This package contains:
- API layer (FastAPI app + WebSocket routes)
- Agents (turn pipeline, utterance accumulation, call state)
- Stores (sessions)
- Models (Pydantic models for sessions and wire messages)
"""
