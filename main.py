"""Yerel geliştirme girişi: python main.py (üretimde: uvicorn app.main:app)."""
import os

import uvicorn

from app.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
