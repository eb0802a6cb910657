#!/usr/bin/env python3
"""
Quick runner for the Visa Portal Case Service
=============================================

Usage:
    python -m visa_portal.run
    # or
    python visa_portal/run.py
"""

import uvicorn

if __name__ == "__main__":
    print("Starting Visa Portal Case Service...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "visa_portal.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
