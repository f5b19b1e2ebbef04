"""
Survey API application.
"""
from fastapi import FastAPI

from .forms_api import router as forms_router
from .voice_api import router as voice_router

app = FastAPI(title="Survey API")
app.include_router(forms_router)
app.include_router(voice_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "component": "survey_api"}
