"""Runtime configuration read from the environment and ``.env``."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

# MongoDB connection string from environment variable
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "quizbuilder")

# "memory" or "mongo"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").strip().lower()

AUTOSAVE_DEBOUNCE_SECONDS = float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "30"))
NEW_QUIZ_DEBOUNCE_SECONDS = float(os.getenv("NEW_QUIZ_DEBOUNCE_SECONDS", "5"))

# Cover images from these hosts are saved without waiting for the debounce
IMMEDIATE_SAVE_HOSTS = tuple(
    host.strip().lower()
    for host in os.getenv("IMMEDIATE_SAVE_HOSTS", "unsplash.com").split(",")
    if host.strip()
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]
