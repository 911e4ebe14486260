"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import analyze

app = FastAPI(
    title="Analytics Query Pipeline",
    version="0.1.0",
    description="Natural-language questions to validated SQL, combined results, insights and narrative",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyze.router, prefix="/analyze", tags=["Analysis"])


@app.get("/health")
def health():
    return {"status": "ok"}
