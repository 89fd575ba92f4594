"""
hex-daemon: Resident speech-to-text daemon

Keeps a single Whisper model loaded in memory and serves transcription
requests from short-lived client invocations via Unix socket IPC.
"""

__version__ = "0.1.0"
