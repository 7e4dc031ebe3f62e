#!/usr/bin/env python3
"""
Application entry point for the Opswatch monitoring service.
"""

import os

from opswatch import create_app
from opswatch.utils.env_config import get_server_config


def main():
    """Main application entry point."""

    # Create Flask application
    app = create_app()

    # Get configuration
    server_config = get_server_config()
    host = server_config['HOST']
    port = server_config['PORT']
    debug = os.environ.get('FLASK_ENV') == 'development'

    print(f"Starting Opswatch on http://{host}:{port}")
    print(f"Debug mode: {debug}")
    print(f"Store driver: {app.config['CACHE_DRIVER']}")

    # Run the application
    app.run(
        host=host,
        port=port,
        debug=debug,
        use_reloader=debug
    )


if __name__ == '__main__':
    main()
