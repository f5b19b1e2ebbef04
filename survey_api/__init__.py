"""
Survey API.

HTTP service behind the voice survey:
- Forms, access tokens and the respondent schema store
- Submission sink (token-checked, idempotent)
- Ephemeral realtime credentials for the voice agent
- Voice session rooms (LiveKit token with agent dispatch, cancellation)
"""
