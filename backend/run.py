#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

The API lifespan starts the in-process timeout scheduler; set
SCHEDULER_ENABLED=false when the sweeps run under Celery beat instead.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

import uvicorn

if __name__ == "__main__":
    print("🚀 Starting ridepay development server...")
    print(f"⏱️  In-process timeout scheduler: {os.getenv('SCHEDULER_ENABLED', 'true')}")
    print("🌐 Access at: http://localhost:8000")
    print("📚 API Docs: http://localhost:8000/docs")

    uvicorn.run(
        "ridepay.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info",
        timeout_graceful_shutdown=5,
    )
