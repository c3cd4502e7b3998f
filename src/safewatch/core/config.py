"""
Configuration Management System for SafeWatch

Handles loading configuration from environment variables, config files,
and provides validation and runtime updates.
"""

import os
import json
import yaml
import logging
from typing import Any, Dict, List, Optional, Callable
from pathlib import Path
from dataclasses import dataclass

from .errors import SafeWatchError


@dataclass
class ConfigSource:
    """Configuration source definition"""
    name: str
    priority: int
    loader: Callable
    path: Optional[str] = None


class ConfigurationError(SafeWatchError):
    """Configuration-related errors"""
    pass


VALID_SENSITIVITIES = ('low', 'medium', 'high')


class ConfigurationManager:
    """
    Manages system configuration with support for multiple sources,
    validation, and runtime updates.
    """

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self.config: Dict[str, Any] = {}
        self.watchers: Dict[str, List[Callable]] = {}
        self.sources: List[ConfigSource] = []
        self.logger = logging.getLogger(__name__)

        # Default configuration values
        self.defaults = {
            "app": {
                "name": "SafeWatch",
                "version": "1.0.0",
                "debug": False,
                "log_level": "INFO"
            },
            "database": {
                "path": "data/safewatch.db",
                "max_connections": 10
            },
            "persistence": {
                "max_retries": 3,
                "retry_delay": 0.5
            },
            "checkin": {
                "tick_interval_seconds": 30,
                "restore_on_start": True
            },
            "escalation": {
                "capture_interval_seconds": 60,
                "max_capture_minutes": 120,
                "max_capture_cycles": 120,
                "context_timeout_seconds": 10,
                "notify_on_trigger": True,
                "stale_alert_hours": 24
            },
            "notifications": {
                "max_retries": 3,
                "initial_backoff_seconds": 1.0,
                "max_backoff_seconds": 30.0,
                "backoff_multiplier": 2.0,
                "attempt_timeout_seconds": 20,
                "stop_on_first_success": False,
                "email": {
                    "enabled": True,
                    "smtp_host": "localhost",
                    "smtp_port": 587,
                    "smtp_username": "",
                    "smtp_password": "",
                    "smtp_use_tls": True,
                    "smtp_use_ssl": False,
                    "smtp_timeout": 30,
                    "from_address": "no-reply@safewatch.example.com",
                    "from_name": "SafeWatch"
                },
                "whatsapp": {
                    "enabled": True,
                    "api_token": "",
                    "phone_number_id": "",
                    "api_version": "v18.0",
                    "base_url": "https://graph.facebook.com"
                }
            },
            "threat_monitor": {
                "enabled": True,
                "auto_sos": False,
                "sensitivity": "medium",
                "confidence_threshold": 0.7,
                "trigger_types": ["fall", "impact", "distress_audio"],
                "sample_interval_seconds": 0.5,
                "fall_detection": True,
                "impact_detection": True,
                "suspicious_activity_detection": True
            },
            "logging": {
                "level": "INFO",
                "file": "logs/safewatch.log",
                "audit_file": "logs/notifications_audit.log",
                "max_size": "10MB",
                "backup_count": 5
            }
        }

        self._setup_sources()

    def _setup_sources(self):
        """Set up configuration sources in priority order"""
        # Environment variables (highest priority)
        self.sources.append(ConfigSource(
            name="environment",
            priority=4,
            loader=self._load_from_env
        ))

        # Local config file
        local_config_path = str(self.config_dir / "config.yaml")
        self.sources.append(ConfigSource(
            name="local_config",
            priority=3,
            loader=lambda: self._load_from_file(local_config_path),
            path=local_config_path
        ))

        # Default config file
        default_config_path = str(self.config_dir / "default.yaml")
        self.sources.append(ConfigSource(
            name="default_config",
            priority=2,
            loader=lambda: self._load_from_file(default_config_path),
            path=default_config_path
        ))

        # Built-in defaults (lowest priority)
        self.sources.append(ConfigSource(
            name="defaults",
            priority=1,
            loader=lambda: self.defaults
        ))

    def load_config(self) -> None:
        """Load configuration from all sources"""
        self.logger.info("Loading configuration from all sources")

        merged_config = {}

        # Lowest priority first so higher priorities override
        for source in sorted(self.sources, key=lambda x: x.priority):
            try:
                source_config = source.loader()
                if source_config:
                    merged_config = self._deep_merge(merged_config, source_config)
                    self.logger.debug(f"Loaded configuration from {source.name}")
            except Exception as e:
                self.logger.warning(f"Failed to load config from {source.name}: {e}")

        self.config = merged_config
        self._validate_config()
        self.logger.info("Configuration loaded successfully")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        config = {}

        env_mappings = {
            "SAFEWATCH_DEBUG": "app.debug",
            "SAFEWATCH_LOG_LEVEL": "app.log_level",
            "SAFEWATCH_DB_PATH": "database.path",
            "SAFEWATCH_SMTP_HOST": "notifications.email.smtp_host",
            "SAFEWATCH_SMTP_PORT": "notifications.email.smtp_port",
            "SAFEWATCH_SMTP_USERNAME": "notifications.email.smtp_username",
            "SAFEWATCH_SMTP_PASSWORD": "notifications.email.smtp_password",
            "SAFEWATCH_WHATSAPP_API_TOKEN": "notifications.whatsapp.api_token",
            "SAFEWATCH_WHATSAPP_PHONE_NUMBER_ID": "notifications.whatsapp.phone_number_id",
            "SAFEWATCH_THREAT_TRIGGER_TYPES": "threat_monitor.trigger_types"
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                # Convert string values to appropriate types
                if value.lower() in ('true', 'false'):
                    value = value.lower() == 'true'
                elif value.isdigit() and not config_key.endswith('phone_number_id'):
                    value = int(value)
                elif config_key == "threat_monitor.trigger_types":
                    try:
                        value = json.loads(value)
                    except json.JSONDecodeError:
                        self.logger.warning(f"Invalid JSON in {env_var}: {value}")
                        continue

                self._set_nested_value(config, config_key, value)

        return config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        path = Path(file_path)

        if not path.exists():
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    return json.load(f)
                else:
                    self.logger.warning(f"Unsupported config file format: {path}")
                    return {}
        except Exception as e:
            self.logger.error(f"Error loading config file {path}: {e}")
            return {}

    def _deep_merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _set_nested_value(self, config: Dict, key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation"""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _validate_config(self) -> None:
        """Validate configuration values"""
        errors = []

        required_sections = ['app', 'database', 'checkin', 'escalation', 'notifications']
        for section in required_sections:
            if section not in self.config:
                errors.append(f"Missing required configuration section: {section}")

        # Database directory
        db_path = self.get('database.path')
        if db_path and db_path != ':memory:':
            db_dir = Path(db_path).parent
            if not db_dir.exists():
                try:
                    db_dir.mkdir(parents=True, exist_ok=True)
                except Exception as e:
                    errors.append(f"Cannot create database directory {db_dir}: {e}")

        log_level = self.get('app.log_level', 'INFO')
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(log_level).upper() not in valid_levels:
            errors.append(f"Invalid log level: {log_level}")

        positive_keys = [
            'checkin.tick_interval_seconds',
            'escalation.capture_interval_seconds',
            'escalation.max_capture_minutes',
            'escalation.max_capture_cycles',
            'escalation.context_timeout_seconds',
            'notifications.attempt_timeout_seconds',
        ]
        for key in positive_keys:
            value = self.get(key)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                errors.append(f"{key} must be a positive number, got {value!r}")

        for key in ['notifications.max_retries', 'persistence.max_retries']:
            value = self.get(key)
            if value is not None and (not isinstance(value, int) or value < 0):
                errors.append(f"{key} must be a non-negative integer, got {value!r}")

        multiplier = self.get('notifications.backoff_multiplier')
        if multiplier is not None and multiplier < 1:
            errors.append(f"Invalid backoff multiplier: {multiplier}")

        sensitivity = self.get('threat_monitor.sensitivity', 'medium')
        if sensitivity not in VALID_SENSITIVITIES:
            errors.append(f"Invalid threat sensitivity: {sensitivity}")

        threshold = self.get('threat_monitor.confidence_threshold', 0.7)
        if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            errors.append(f"Confidence threshold must be within [0, 1], got {threshold!r}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        keys = key.split('.')
        current = self.config

        try:
            for k in keys:
                current = current[k]
            return current
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(self.config, key, value)

        # Notify watchers
        if key in self.watchers:
            for callback in self.watchers[key]:
                try:
                    callback(key, value)
                except Exception as e:
                    self.logger.error(f"Error in config watcher for {key}: {e}")

    def watch(self, key: str, callback: Callable[[str, Any], None]) -> None:
        """Watch for configuration changes"""
        if key not in self.watchers:
            self.watchers[key] = []
        self.watchers[key].append(callback)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self.get(section, {})

    def is_channel_enabled(self, channel: str) -> bool:
        """Check if a notification channel is enabled"""
        return self.get(f'notifications.{channel}.enabled', False)

    def export_config(self, file_path: str) -> None:
        """Export current configuration to file"""
        path = Path(file_path)

        try:
            with open(path, 'w') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    yaml.dump(self.config, f, default_flow_style=False, indent=2)
                elif path.suffix.lower() == '.json':
                    json.dump(self.config, f, indent=2)
                else:
                    raise ValueError(f"Unsupported file format: {path.suffix}")

            self.logger.info(f"Configuration exported to {path}")
        except Exception as e:
            self.logger.error(f"Failed to export configuration: {e}")
            raise ConfigurationError(f"Export failed: {e}")
