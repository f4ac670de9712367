#!/usr/bin/env python3
"""
Entry point for the CS2 tournament orchestrator.

Usage:
    python run.py                    # Run the API server

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 3000)
    API_TOKEN: Bearer token for the admin API (unset disables auth)
    WEBHOOK_TOKEN: Expected X-MatchZy-Token header on /api/events
"""
import os


def run_orchestrator():
    """Run the orchestrator API."""
    from cs2_orchestrator.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 3000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting CS2 orchestrator on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_orchestrator()
