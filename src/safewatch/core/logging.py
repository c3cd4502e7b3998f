"""
Logging Configuration for SafeWatch

Sets up the application log (rotating file plus console), per-component
levels, and the notification audit trail: one JSON line per delivery
result written by structlog to its own rotating file.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Dict, Optional
import structlog


AUDIT_LOGGER = 'safewatch.notifications'

_SIZE_UNITS = {'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}


def parse_size(size_str) -> int:
    """Parse a size such as '10MB' into bytes"""
    size_str = str(size_str).strip().upper()
    for suffix, factor in _SIZE_UNITS.items():
        if size_str.endswith(suffix):
            return int(size_str[:-len(suffix)]) * factor
    return int(size_str)


class SafeWatchLogger:
    """
    Owns the handlers of the root logger and of the audit logger
    """

    def __init__(self, config: Dict):
        self.config = config
        self.log_config = config.get('logging', {})
        self.audit_handler: Optional[logging.Handler] = None
        self._setup_logging()

    def _setup_logging(self):
        log_level = self._level(self.log_config.get('level', 'INFO'))
        max_bytes = parse_size(self.log_config.get('max_size', '10MB'))
        backup_count = self.log_config.get('backup_count', 5)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()

        log_file = self.log_config.get('file', 'logs/safewatch.log')
        if log_file:
            file_handler = self._rotating_handler(log_file, max_bytes, backup_count)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            file_handler.setLevel(log_level)
            root_logger.addHandler(file_handler)

        if self.log_config.get('console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%H:%M:%S'
            ))
            console_handler.setLevel(self._level(self.log_config.get('console_level', 'INFO')))
            root_logger.addHandler(console_handler)

        for component, level in self.log_config.get('components', {}).items():
            logging.getLogger(f'safewatch.{component}').setLevel(self._level(level))

        self._setup_audit_trail(max_bytes, backup_count)

        for noisy in ('asyncio', 'aiohttp.access', 'aiohttp.client'):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    def _setup_audit_trail(self, max_bytes: int, backup_count: int):
        # Audit records are already JSON; write the message only
        audit_file = self.log_config.get('audit_file')
        if not audit_file:
            return

        audit_logger = logging.getLogger(AUDIT_LOGGER)
        for handler in list(audit_logger.handlers):
            if getattr(handler, 'safewatch_audit', False):
                audit_logger.removeHandler(handler)
                handler.close()

        self.audit_handler = self._rotating_handler(audit_file, max_bytes, backup_count)
        self.audit_handler.setFormatter(logging.Formatter('%(message)s'))
        self.audit_handler.setLevel(logging.INFO)
        self.audit_handler.safewatch_audit = True
        audit_logger.addHandler(self.audit_handler)

    @staticmethod
    def _rotating_handler(path: str, max_bytes: int, backup_count: int) -> logging.Handler:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )

    @staticmethod
    def _level(name: str) -> int:
        return getattr(logging, str(name).upper())

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name if name.startswith('safewatch') else f'safewatch.{name}')


_logger_instance: Optional[SafeWatchLogger] = None


def initialize_logging(config: Dict) -> SafeWatchLogger:
    """Initialize the global logging system"""
    global _logger_instance
    _logger_instance = SafeWatchLogger(config)
    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    if _logger_instance is None:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        return logging.getLogger(f'safewatch.{name}')

    return _logger_instance.get_logger(name)


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured (JSON) logger under the safewatch namespace"""
    if _logger_instance is None and not structlog.is_configured():
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.JSONRenderer()
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    return structlog.get_logger(f'safewatch.{name}')
