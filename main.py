"""
Development server entry point:
    python main.py
or
    uvicorn fieldservice.main:app --reload
"""
import uvicorn

from fieldservice.main import app  # noqa: F401

if __name__ == "__main__":
    uvicorn.run("fieldservice.main:app", host="0.0.0.0", port=8000, reload=True)
