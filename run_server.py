#!/usr/bin/env python3
"""Migrate Mate Cancel Flow — API server.

Launch: python3 run_server.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import uvicorn

from cancel_flow.config import APP_ENV, HOST, PORT, SUPABASE_URL


def main():
    print("=" * 60)
    print("  Migrate Mate — Cancel Flow")
    print("=" * 60)

    if not SUPABASE_URL:
        print("\n  WARNING: SUPABASE_URL not set. Set environment variables:")
        print("    SUPABASE_URL, SUPABASE_SERVICE_KEY")
        print("  Subscription lookups will fall back to mock data...\n")

    print(f"Starting server on {HOST}:{PORT} ({APP_ENV})")
    print(f"\n  API docs: http://{HOST}:{PORT}/docs")
    print("  Press Ctrl+C to stop\n")

    from cancel_flow.app import create_app
    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_level="info")


if __name__ == "__main__":
    main()
