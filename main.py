"""
VozSmart Dashboard - Web Server Entry Point
===========================================

Run this to start the update dashboard:
    python main.py

Then open http://127.0.0.1:8000 in your browser.

Configuration comes from environment variables (or a .env file), see
src/infrastructure/config/settings.py.
"""

import os

import uvicorn


def main():
    """Start the web server."""
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    print("\n" + "=" * 50)
    print("   VozSmart - Update Dashboard")
    print("=" * 50)
    print(f"\n   Starting server at http://{host}:{port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "src.web.app:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "0") == "1",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
