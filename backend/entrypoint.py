"""
Entrypoint for running the Secret Santa API with uvicorn.
"""
import os

import uvicorn

from santa_api.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
