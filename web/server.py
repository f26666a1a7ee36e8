"""
ConnectorServer class for CLI control of the FastAPI application.
"""
import logging
import os
from typing import Optional

import uvicorn

from settings import PORT, LOG_LEVEL, BIND_ADDRESS, BASE_URL
from providers import quiet_http_loggers
from social_oauth import OAuthManager
from .app import create_app

logger = logging.getLogger(__name__)


class ConnectorServer:
    """Connector server wrapper for CLI control"""

    def __init__(self, debug: bool = False, bind_address: Optional[str] = None, manager: Optional[OAuthManager] = None):
        self.server = None
        self.config = None
        self.debug = debug
        self.bind_address = bind_address or BIND_ADDRESS
        self.app = create_app(manager)

        # Configure debug logging if enabled
        if debug:
            self._setup_debug_logging()

    def _setup_debug_logging(self):
        """Setup debug logging for the connector server"""
        # Get root logger and configure it for debug
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)

        # Clear existing handlers to avoid duplicates
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_file = os.path.abspath('connector_debug.log')
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(formatter)
        console_handler.setFormatter(formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)
        quiet_http_loggers()

        logger.info(f"Debug logging enabled - appending to {log_file}")

    def run(self):
        """Run the connector server (blocking)"""
        logger.info(f"Starting Social Account Connector on http://{self.bind_address}:{PORT}")
        logger.info(f"OAuth callbacks: {BASE_URL.rstrip('/')}/auth/{{tiktok,instagram}}/callback")
        self.config = uvicorn.Config(
            self.app,
            host=self.bind_address,
            port=PORT,
            log_level=LOG_LEVEL,
            access_log=False  # Request middleware already logs
        )
        self.server = uvicorn.Server(self.config)
        self.server.run()

    def stop(self):
        """Stop the connector server"""
        if self.server:
            self.server.should_exit = True
