"""
Voice agent for survey forms.

Lets a respondent complete a form by talking to a realtime speech model:
- instructions.py compiles the form schema into interviewer instructions
- submission.py / history.py turn conversation events into answers, once each
- tools.py is the tool surface the model calls (update, validate, submit)
- session.py owns one realtime session and its single event channel
- presenter.py projects session state for display

The remote model is steered only by natural-language instructions. Every
invariant (dedupe, coercion, validation) is enforced locally.
"""
