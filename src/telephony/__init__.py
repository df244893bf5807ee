"""Telephony components for dialing into a conference bridge.

Call flow:
REST dial -> menu walk (DTMF batches) -> media stream websocket ->
audio bridge -> speech endpoint, and back through one delivery backend.
"""
