"""
Clinic-Stream: live clinical consultation capture

Streams consultation audio to a speech-recognition service, keeps a
speaker-attributed transcript per session and turns the finalized transcript
into a validated clinical document (anamnesis plus suggestions).
"""

__version__ = "0.1.0"
__author__ = "Clinic-Stream Team"
__description__ = "Live consultation transcription and clinical structuring"
