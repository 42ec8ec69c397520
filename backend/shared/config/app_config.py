import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env", override=False)

# Server config
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Passage corpus
DATA_DIR = os.getenv("DATA_DIR", "data")
PASSAGES_PATH = os.getenv("PASSAGES_PATH", os.path.join(DATA_DIR, "passages.json"))

# Progress store config
PROGRESS_BACKEND = os.getenv("PROGRESS_BACKEND", "file").lower()  # file | sql
PROGRESS_DIR = os.getenv("PROGRESS_DIR", os.path.join(DATA_DIR, "progress"))
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/progress.db")

# Session config
QUIT_TOKEN = os.getenv("QUIT_TOKEN", "quit")
