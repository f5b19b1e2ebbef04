"""
Structured event emission shared by the survey API and the voice agent worker.
"""
