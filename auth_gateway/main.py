"""
Entry point for the auth gateway.

This module wires configuration, logging and backends into an Engine and
exposes the six provisioning operations and a health check on the command line.
"""

import sys
import json
import logging
import argparse
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional
from auth_gateway.config import load_config, ConfigurationError
from auth_gateway.engine import Engine, AggregateOperationError, Interrupted
from auth_gateway.backends.base import Backend
from auth_gateway.logging_setup import setup_logging, security_logger

logger = logging.getLogger(__name__)

# command -> (engine method, first argument, second argument)
COMMANDS = {
    'add-user': ('add_user', 'user_id', 'user_name'),
    'add-org': ('add_organization', 'org_id', 'org_name'),
    'add-user-to-org': ('add_user_to_org', 'user_id', 'org_id'),
    'remove-user': ('remove_user', 'user_id', 'user_name'),
    'remove-org': ('remove_organization', 'org_id', 'org_name'),
    'remove-user-from-org': ('remove_user_from_org', 'user_id', 'org_id'),
}

EXIT_OK = 0
EXIT_OPERATION_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_BACKEND_ERROR = 3
EXIT_INTERRUPTED = 130


class GatewayError(Exception):
    """Raised when backends cannot be loaded or initialized."""
    pass


def load_backend(backend_config: Dict[str, Any]) -> Backend:
    """Dynamically load a backend module and create the backend instance."""
    module_name = backend_config['module']
    backend_name = backend_config['name']

    try:
        backend_module = importlib.import_module(f"auth_gateway.backends.{module_name}")
    except ImportError as e:
        raise GatewayError(f"Failed to import backend module {module_name}: {e}") from e

    backend_class = None
    for attr_name in dir(backend_module):
        attr = getattr(backend_module, attr_name)
        if (isinstance(attr, type) and
                issubclass(attr, Backend) and
                attr is not Backend and
                attr.__module__ == backend_module.__name__):
            backend_class = attr
            break

    if not backend_class:
        raise GatewayError(f"No Backend subclass found in module {module_name}")

    try:
        return backend_class.from_config(backend_config)
    except Exception as e:
        raise GatewayError(f"Failed to initialize backend {backend_name}: {e}") from e


def load_backends(config: Dict[str, Any]) -> List[Backend]:
    """Load every configured backend, in configuration order."""
    return [load_backend(backend_config) for backend_config in config.get('backends', [])]


class Gateway:
    """
    Wires configuration, logging, backends and the engine together.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize gateway.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path
        self.config = None
        self.backends = []
        self.engine = None

    def _load_configuration(self):
        self.config = load_config(self.config_path)
        security_logger.log_configuration_access(self.config_path or 'default')

    def _setup_logging(self):
        setup_logging(self.config.get('logging', {}))

    def start(self) -> Engine:
        """Load configuration and backends and build the engine."""
        self._load_configuration()
        self._setup_logging()
        self.backends = load_backends(self.config)

        gateway_config = self.config.get('gateway', {})
        self.engine = Engine(
            self.backends,
            timeout_seconds=gateway_config.get('timeout_seconds', 30),
            max_workers=gateway_config.get('max_workers')
        )
        logger.info(f"Gateway started with backends: {', '.join(b.get_name() for b in self.backends)}")
        return self.engine

    def run(self, command: str, first: str, second: str) -> int:
        """
        Run one provisioning command.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        method_name = COMMANDS[command][0]
        try:
            engine = self.start()
            getattr(engine, method_name)(first, second)
            logger.info(f"{command} {first} {second} completed")
            return EXIT_OK
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except GatewayError as e:
            logger.error(f"Backend error: {e}")
            return EXIT_BACKEND_ERROR
        except Interrupted as e:
            logger.error(str(e))
            return EXIT_INTERRUPTED
        except AggregateOperationError as e:
            logger.error(f"{command} failed on {', '.join(e.failed_backends or e.pending)}: {e}")
            return EXIT_OPERATION_FAILED
        finally:
            self.close()

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the gateway.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        backend_checks = {}
        for backend_config in self.config.get('backends', []):
            backend_name = backend_config['name']
            try:
                backend = load_backend(backend_config)
                try:
                    if not backend.check_health():
                        raise GatewayError('backend reported unhealthy')
                finally:
                    backend.close()
                backend_checks[backend_name] = {
                    'status': 'pass',
                    'message': 'Backend reachable'
                }
            except Exception as e:
                backend_checks[backend_name] = {
                    'status': 'fail',
                    'message': f'Backend check failed: {e}'
                }
                health_status['status'] = 'unhealthy'

        health_status['checks']['backends'] = backend_checks
        return health_status

    def close(self):
        """Release the engine and backend resources."""
        if self.engine:
            self.engine.close()
            self.engine = None
        for backend in self.backends:
            backend.close()
        self.backends = []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='auth-gateway',
        description='Provision users and organizations across backends'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of an operation')

    subparsers = parser.add_subparsers(dest='command')
    for command, (_, first, second) in COMMANDS.items():
        subparser = subparsers.add_parser(command, help=command.replace('-', ' '))
        subparser.add_argument(first)
        subparser.add_argument(second)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    gateway = Gateway(config_path=args.config)

    if args.health_check:
        health_status = gateway.health_check()
        print(json.dumps(health_status, indent=2))
        return EXIT_OK if health_status['status'] == 'healthy' else EXIT_OPERATION_FAILED

    if not args.command:
        parser.print_help()
        return EXIT_CONFIGURATION_ERROR

    _, first, second = COMMANDS[args.command]
    return gateway.run(args.command, getattr(args, first), getattr(args, second))


if __name__ == "__main__":
    sys.exit(main())
