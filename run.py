#!/usr/bin/env python3
"""
Cooperative Ledger Entry Point

Starts the FastAPI server for the ledger and passbook engine.
"""

import sys

from coop_ledger.api import run_server
from coop_ledger.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("Starting Cooperative Ledger API...")
    print(f"Storage: {settings.database_path if settings.use_sqlite else 'in-memory'}")
    print(f"API available at: http://localhost:{settings.api_port}")
    print()
    
    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Cooperative Ledger API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
