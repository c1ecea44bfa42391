"""
Pydantic / datamodels used by the voice relay runtime.

Split into:
- session_models: Session + TurnRecord + SessionMode
- api_models: WebSocket inbound message and outbound event schemas
"""
