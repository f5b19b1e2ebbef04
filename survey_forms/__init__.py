"""
Survey form domain shared by the survey API and the voice agent.

- FormField / FormSchema: the ordered question list of one form
- Key generation for new fields
- Validation of (partial) submissions against a schema
"""
