#!/usr/bin/env python3
"""
mashfinder HTTP Server Runner
"""

import os

from mashfinder.crosscutting.config import get_config_manager
from mashfinder.crosscutting.logging import setup_logging
from mashfinder.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    config = get_config_manager()
    setup_logging(config.get_settings().log_level)
    server = HTTPServer(
        host=os.getenv('MASHFINDER_HOST', 'localhost'),
        port=int(os.getenv('MASHFINDER_PORT', '3000')),
        debug=os.getenv('MASHFINDER_DEBUG') == '1',
        config=config,
    )
    server.run()


if __name__ == '__main__':
    main()
