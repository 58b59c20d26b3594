#!/usr/bin/env python3
"""
Entry point for running the Site Mirror web control panel.

Usage:
    site-mirror-web --host 0.0.0.0 --port 5000
"""

import argparse
import logging

from .app import run_app
from ..utils.log import print_info, setup_logger


def main():
    """Parse arguments and run the web application."""
    parser = argparse.ArgumentParser(
        description='Run the Site Mirror web control panel'
    )
    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind to (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        default=5000,
        help='Port to listen on (default: 5000)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode'
    )

    args = parser.parse_args()

    setup_logger(level=logging.DEBUG if args.debug else logging.INFO)
    print_info(f"Starting Site Mirror web panel at http://{args.host}:{args.port}")
    run_app(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
