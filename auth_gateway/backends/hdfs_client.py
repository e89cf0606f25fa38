"""
WebHDFS client for directory provisioning.

This module talks to the WebHDFS REST API of an HDFS namenode and exposes the
small set of filesystem calls the HDFS backend needs: existence checks,
directory creation, permission/ownership changes, recursive deletes and ACLs.
"""

import json
import ssl
import base64
import logging
import threading
from typing import Dict, Any, List, Optional, NamedTuple, Union
from urllib.parse import urlparse, urlencode, quote
from http.client import HTTPSConnection, HTTPConnection, HTTPException

logger = logging.getLogger(__name__)

NONE = 0
EXECUTE = 1
WRITE = 2
READ = 4
ALL = READ | WRITE | EXECUTE


class Permission(NamedTuple):
    """POSIX-style rights triple, one octal digit per class."""

    user: int
    group: int
    other: int

    def to_octal(self) -> str:
        return f"{self.user:o}{self.group:o}{self.other:o}"

    def __str__(self):
        return self.to_octal()


OWNER_EXCLUSIVE = Permission(ALL, NONE, NONE)
SHARED_GROUP = Permission(ALL, ALL, NONE)


class DirectoryStoreError(OSError):
    """Raised when a WebHDFS call fails."""

    def __init__(self, message: str, status: Optional[int] = None, exception: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.exception = exception


class WebHdfsClient:
    """
    Minimal WebHDFS client.

    Connections are kept per thread because the client is shared by concurrent
    backend invocations and ``http.client`` connections are not thread safe.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize WebHDFS client.

        Args:
            config: Backend configuration dictionary with ``webhdfs_url``,
                optional ``auth``, ``verify_ssl``, ``truststore_file``,
                ``keystore_file`` and ``timeout``
        """
        self.config = config
        self.base_url = config['webhdfs_url']
        self.auth_config = config.get('auth') or {}
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.ssl_context = None
        self.auth_headers = {}
        self.auth_params = {}
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.host}")
            return

        self.ssl_context = ssl.create_default_context()

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            try:
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")
            except (OSError, ssl.SSLError) as e:
                raise DirectoryStoreError(f"Truststore loading failed: {e}") from e

        keystore_file = self.config.get('keystore_file')
        if keystore_file:
            try:
                self.ssl_context.load_cert_chain(
                    keystore_file,
                    keyfile=self.config.get('key_file'),
                    password=self.config.get('keystore_password')
                )
                logger.info(f"Loaded PEM client certificate: {keystore_file}")
            except (OSError, ssl.SSLError) as e:
                raise DirectoryStoreError(f"Client certificate loading failed: {e}") from e

    def _setup_authentication(self):
        """Set up query parameters or headers based on the auth method."""
        auth_method = self.auth_config.get('method', '').lower()

        if auth_method == 'simple':
            username = self.auth_config.get('username')
            if username:
                self.auth_params['user.name'] = username
                logger.debug(f"Configured simple authentication as {username} for {self.host}")
            else:
                logger.error(f"Simple auth configured but missing username for {self.host}")

        elif auth_method == 'token':
            token = self.auth_config.get('token')
            if token:
                self.auth_params['delegation'] = token
                logger.debug(f"Configured delegation token authentication for {self.host}")
            else:
                logger.error(f"Token auth configured but missing token for {self.host}")

        elif auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
                logger.debug(f"Configured Basic authentication for {self.host}")
            else:
                logger.error(f"Basic auth configured but missing username or password for {self.host}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.host}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create the HTTP connection for the current thread."""
        connection = getattr(self._local, 'connection', None)
        if connection:
            return connection

        if self.parsed_url.scheme == 'https':
            connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            connection = HTTPConnection(self.host, timeout=self.timeout)

        self._local.connection = connection
        with self._connections_lock:
            self._connections.append(connection)
        return connection

    def _drop_connection(self):
        connection = getattr(self._local, 'connection', None)
        self._local.connection = None
        if connection:
            with self._connections_lock:
                if connection in self._connections:
                    self._connections.remove(connection)
            self._close_connection(connection)

    def _close_connection(self, connection):
        try:
            connection.close()
        except OSError as e:
            logger.warning(f"Error closing connection to {self.host}: {e}")

    def request(self, method: str, path: str, op: str, **params) -> Dict[str, Any]:
        """
        Make a WebHDFS request.

        Args:
            method: HTTP method (GET, PUT, DELETE)
            path: Absolute HDFS path
            op: WebHDFS operation name
            **params: Extra query parameters

        Returns:
            Parsed JSON response (empty dict for empty bodies)

        Raises:
            DirectoryStoreError: If the request fails or returns an error status
        """
        query = dict(self.auth_params)
        query['op'] = op
        query.update(params)
        full_path = f"{self.base_path}{quote(path)}?{urlencode(query)}"

        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} {op} request for {path} to {self.host}")
            conn.request(method, full_path, None, dict(self.auth_headers))
            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
        except (OSError, HTTPException) as e:
            self._drop_connection()
            raise DirectoryStoreError(f"Connection error to {self.host}: {e}") from e

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status >= 400:
            raise self._error_from_response(response.status, response.reason, response_data)

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise DirectoryStoreError(f"Invalid JSON response from {self.host}: {e}") from e

    @staticmethod
    def _error_from_response(status: int, reason: str, body: str) -> DirectoryStoreError:
        """Build an error from a WebHDFS RemoteException body."""
        exception = None
        message = f"HTTP {status}: {reason}"
        try:
            remote = json.loads(body).get('RemoteException', {}) if body else {}
        except (json.JSONDecodeError, AttributeError):
            remote = {}
        if remote:
            exception = remote.get('exception')
            message = f"HTTP {status}: {exception}: {remote.get('message', '')}"
        return DirectoryStoreError(message, status=status, exception=exception)

    def exists(self, path: str) -> bool:
        """Return True if the path exists."""
        try:
            self.request('GET', path, 'GETFILESTATUS')
        except DirectoryStoreError as e:
            if e.status == 404:
                return False
            raise
        return True

    def mkdir(self, path: str) -> None:
        response = self.request('PUT', path, 'MKDIRS')
        if not response.get('boolean', False):
            raise DirectoryStoreError(f"Could not create directory {path}")

    def set_permission(self, path: str, permission: Permission) -> None:
        self.request('PUT', path, 'SETPERMISSION', permission=permission.to_octal())

    def set_owner(self, path: str, owner: str, group: str) -> None:
        self.request('PUT', path, 'SETOWNER', owner=owner, group=group)

    def delete(self, path: str, recursive: bool = False) -> bool:
        response = self.request('DELETE', path, 'DELETE', recursive=str(recursive).lower())
        return response.get('boolean', False)

    def get_acl_entries(self, path: str) -> List[str]:
        """Return the extended ACL entries of the path, e.g. ``user:cf:rwx``."""
        response = self.request('GET', path, 'GETACLSTATUS')
        return list(response.get('AclStatus', {}).get('entries', []))

    def has_acl(self, path: str, principal: str) -> bool:
        """Return True if ``principal`` already holds the grant ``set_acl`` applies."""
        entries = set(self.get_acl_entries(path))
        return all(entry in entries for entry in acl_entries(principal))

    def set_acl(self, path: str, principal: str) -> None:
        """Grant ``principal`` full access on the path and its future children."""
        self.request('PUT', path, 'MODIFYACLENTRIES', aclspec=','.join(acl_entries(principal)))

    def close(self):
        """Close the connections opened by every thread."""
        self._local.connection = None
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            self._close_connection(connection)


def acl_entries(principal: str) -> List[str]:
    """Access and default ACL entries granting ``principal`` full rights."""
    return [f"user:{principal}:rwx", f"default:user:{principal}:rwx"]
