#!/usr/bin/env python3
"""
Dev runner for the API.
Usage: python scripts/dev.py

Storage is in-memory unless REDIS_URL (or KV_URL) is set.
"""

import logging
import os
import socket
import sys
from pathlib import Path

import uvicorn

ROOT = Path(__file__).resolve().parent.parent
BACKEND_PORT = int(os.environ.get("BACKEND_PORT", "8000"))
API_BASE = f"http://localhost:{BACKEND_PORT}"


def port_in_use(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(("127.0.0.1", port)) == 0


def main():
    os.chdir(ROOT)
    if port_in_use(BACKEND_PORT):
        print(f"Port {BACKEND_PORT} is in use. Stop the process or set BACKEND_PORT=<port>")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    storage = "redis" if (os.environ.get("REDIS_URL") or os.environ.get("KV_URL")) else "in-memory"

    print()
    print(f"  API:     {API_BASE}/docs")
    print(f"  Storage: {storage}")
    print()

    uvicorn.run("scibrain.app:app", host="0.0.0.0", port=BACKEND_PORT, reload=True)


if __name__ == "__main__":
    main()
