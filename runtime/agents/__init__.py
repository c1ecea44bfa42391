"""
Agents used by the voice relay runtime.

- TurnProcessor: transcribe -> stream reply -> synthesize for one utterance
- UtteranceAccumulator: silence-timed batching and the single-flight gate
- CallController: idle/active call state of continuous sessions
"""
