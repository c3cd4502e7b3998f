"""
SafeWatch Main Application Entry Point

Initializes configuration, logging and the database, then runs the
emergency safety service until a shutdown signal is received.
"""

import asyncio
import signal
import sys
import traceback
from typing import Any, Dict, Optional

from safewatch.core.config import ConfigurationManager
from safewatch.core.database import DatabaseManager, initialize_database
from safewatch.core.logging import initialize_logging, get_logger
from safewatch.services.emergency import EmergencySafetyService, SQLitePersistenceGateway


class SafeWatchApplication:
    """Main SafeWatch application class"""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config_manager: Optional[ConfigurationManager] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.gateway: Optional[SQLitePersistenceGateway] = None
        self.service: Optional[EmergencySafetyService] = None
        self.logger = None

        # Application state
        self.running = False
        self.shutdown_event = asyncio.Event()

    async def initialize(self):
        """Initialize all application components"""
        try:
            self.config_manager = ConfigurationManager(self.config_dir)
            self.config_manager.load_config()

            initialize_logging(self.config_manager.config)
            self.logger = get_logger('main')

            self.logger.info("SafeWatch starting up...")
            self.logger.info(f"Version: {self.config_manager.get('app.version', '1.0.0')}")
            self.logger.info(f"Debug mode: {self.config_manager.get('app.debug', False)}")

            self._initialize_database()

            self.service = EmergencySafetyService(self.config_manager.config, self.gateway)
            self.service.add_error_callback(self._handle_service_error)

            self.logger.info("Core systems initialized successfully")

        except Exception as e:
            if self.logger:
                self.logger.error(f"Failed to initialize application: {e}", exc_info=True)
            else:
                print(f"Failed to initialize application: {e}")
                traceback.print_exc()
            raise

    def _initialize_database(self):
        """Initialize database and the persistence gateway"""
        self.logger.info("Initializing database...")

        db_path = self.config_manager.get('database.path', 'data/safewatch.db')
        max_connections = self.config_manager.get('database.max_connections', 10)
        self.db_manager = initialize_database(db_path, max_connections)

        self.gateway = SQLitePersistenceGateway(
            self.db_manager,
            max_retries=self.config_manager.get('persistence.max_retries', 3),
            retry_delay=self.config_manager.get('persistence.retry_delay', 0.5)
        )

        self.logger.info("Database initialized successfully")

    async def start(self):
        """Start the application"""
        await self.initialize()

        self.running = True
        self.logger.info("SafeWatch is now running")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            await self.service.start()
            await self._main_loop()

        except Exception as e:
            self.logger.error(f"Application error: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def _main_loop(self):
        """Main application event loop"""
        self.logger.info("Entering main application loop")

        stats_task = asyncio.create_task(self._stats_reporter_loop())

        try:
            await self.shutdown_event.wait()
            self.logger.info("Shutdown signal received")
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)

    async def _stats_reporter_loop(self):
        """Report storage statistics periodically"""
        while self.running:
            try:
                await asyncio.sleep(300)

                stats = self.db_manager.get_stats()
                active_alerts = len(self.gateway.list_active_alerts())
                self.logger.info(
                    f"System Stats - "
                    f"Check-ins: {stats.get('check_ins', 0)}, "
                    f"Alerts: {stats.get('sos_alerts', 0)} ({active_alerts} active), "
                    f"Dispatches: {stats.get('sos_dispatches', 0)}"
                )

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in stats reporter: {e}")

    def _handle_service_error(self, user_id: str, error: Exception):
        self.logger.critical(f"User {user_id} needs attention: {error}")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}")
        self.shutdown_event.set()

    async def shutdown(self):
        """Shutdown the application gracefully"""
        if not self.running:
            return

        self.logger.info("Shutting down SafeWatch...")
        self.running = False

        try:
            if self.service:
                await self.service.stop()

            if self.db_manager:
                self.db_manager.close()

            self.logger.info("SafeWatch shutdown complete")

        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}")

    def get_system_status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'database': self.db_manager.get_stats() if self.db_manager else None,
            'active_alerts': len(self.gateway.list_active_alerts()) if self.gateway else 0,
        }


async def main():
    """Main entry point"""
    config_dir = sys.argv[1] if len(sys.argv) > 1 else "config"
    app = SafeWatchApplication(config_dir)

    try:
        await app.start()
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        print(f"Application failed to start: {e}")
        sys.exit(1)


def run():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nApplication interrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
