#!/usr/bin/env python3
# backend/run_celery_beat.py
"""
Development Celery beat runner.

Schedules process_booking_timeouts and reconcile_payment_holds; run the API
with SCHEDULER_ENABLED=false alongside it so the sweeps are not doubled.
"""
import os
from pathlib import Path
import subprocess
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

if __name__ == "__main__":
    print("⏰ Starting Celery beat for the payment-hold sweeps…")

    cmd = [sys.executable, "-m", "celery", "-A", "ridepay.tasks.celery_app", "beat", "--loglevel=info"]

    subprocess.run(cmd)
