"""
Fan-out engine for the auth gateway.

This module contains the coordinator that mirrors every logical operation
(add/remove user, organization or membership) into all configured backends
at once, bounded by a single deadline.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from typing import List, Optional, Iterable
from auth_gateway.backends.base import Backend, BackendOperationError
from auth_gateway.cancellation import CancellationToken, OperationCancelled, bind_token
from auth_gateway.logging_setup import security_logger

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30

OPERATIONS = {
    'add_user': 'adding user',
    'add_organization': 'adding organization',
    'add_user_to_org': 'adding user to organization',
    'remove_user': 'removing user',
    'remove_organization': 'removing organization',
    'remove_user_from_org': 'removing user from organization',
}


class OperationOutcome:
    """
    Per-backend outcome carried by the engine's errors.

    Attributes:
        operation: Operation description, e.g. ``'adding organization'``
        failures: BackendOperationError for every backend seen failing
        pending: Names of backends that had not finished when the engine
            stopped waiting
    """

    def __init__(self, operation: str, failures: Optional[List[BackendOperationError]] = None,
                 pending: Optional[List[str]] = None):
        self.operation = operation
        self.failures = list(failures or [])
        self.pending = list(pending or [])
        super().__init__(f"Error {operation}: {self._summary()}")

    @property
    def failed_backends(self) -> List[str]:
        return [failure.backend for failure in self.failures]

    def _summary(self) -> str:
        return '; '.join(str(failure) for failure in self.failures) or 'unknown failure'


class AggregateOperationError(OperationOutcome, Exception):
    """Raised when a logical operation did not succeed on every backend."""
    pass


class OperationFailed(AggregateOperationError):
    """At least one backend failed the operation."""
    pass


class DeadlineExceeded(AggregateOperationError):
    """Backends were still running when the deadline elapsed."""

    def _summary(self) -> str:
        return f"deadline exceeded waiting for {', '.join(self.pending) or 'backends'}"


class Interrupted(OperationOutcome, KeyboardInterrupt):
    """
    The waiting thread was interrupted.

    Derives from KeyboardInterrupt and not from Exception, so only interrupt
    handlers catch it. It carries the same outcome attributes as
    AggregateOperationError.
    """

    def _summary(self) -> str:
        return "interrupted while waiting for backends"


class Engine:
    """
    Dispatches each logical operation to every backend concurrently.

    Backend invocations run on a shared worker pool. The calling thread waits
    until all of them finish or the deadline elapses. On failure, deadline or
    interrupt the engine stops waiting, cancels invocations that have not
    started yet and flags the rest through a CancellationToken; it never
    interrupts a backend step that is already running. Nothing is retried.
    """

    def __init__(self, backends: Iterable[Backend], timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 max_workers: Optional[int] = None, log: Optional[logging.Logger] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        """
        Initialize engine.

        Args:
            backends: Backends to fan operations out to
            timeout_seconds: Deadline for one logical operation
            max_workers: Worker pool size, defaults to one thread per backend
            log: Logger to report to, defaults to this module's logger
            executor: Externally owned worker pool to use instead of a private one
        """
        self.backends = list(backends)
        self.timeout_seconds = timeout_seconds
        self.logger = log or logger

        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=max_workers or max(len(self.backends), 1),
                thread_name_prefix='auth-gateway'
            )
            self._owns_executor = True
        else:
            self._owns_executor = False
        self.executor = executor

    def add_user(self, user_id: str, user_name: str) -> None:
        self._run('add_user', user_id, user_name)

    def add_organization(self, org_id: str, org_name: str) -> None:
        self._run('add_organization', org_id, org_name)

    def add_user_to_org(self, user_id: str, org_id: str) -> None:
        self._run('add_user_to_org', user_id, org_id)

    def remove_user(self, user_id: str, user_name: str) -> None:
        self._run('remove_user', user_id, user_name)

    def remove_organization(self, org_id: str, org_name: str) -> None:
        self._run('remove_organization', org_id, org_name)

    def remove_user_from_org(self, user_id: str, org_id: str) -> None:
        self._run('remove_user_from_org', user_id, org_id)

    def _run(self, method_name: str, *args) -> None:
        """
        Fan one operation out and wait for the outcome.

        Raises:
            OperationFailed: If any backend failed
            DeadlineExceeded: If the deadline elapsed first
            Interrupted: If the wait was interrupted
        """
        description = OPERATIONS[method_name]
        token = CancellationToken()
        start = time.monotonic()

        futures = {}
        for backend in self.backends:
            future = self.executor.submit(self._invoke, backend, method_name, description, args, token)
            futures[future] = backend.get_name()

        try:
            remaining = max(self.timeout_seconds - (time.monotonic() - start), 0)
            done, not_done = wait(futures, timeout=remaining, return_when=FIRST_EXCEPTION)
        except KeyboardInterrupt as e:
            error = Interrupted(description, self._collect_failures(futures), self._pending(futures))
            self._abandon(futures, token, 'interrupted')
            self.logger.error(str(error))
            security_logger.log_provisioning_operation(description, args, False)
            raise error from e

        failures = self._collect_failures(done)
        if failures:
            self._abandon(futures, token, 'failed')
            error = OperationFailed(description, failures, self._names(futures, not_done))
            self.logger.error(str(error))
            security_logger.log_provisioning_operation(description, args, False)
            raise error from failures[0]

        if not_done:
            self._abandon(futures, token, 'deadline exceeded')
            error = DeadlineExceeded(description, [], self._names(futures, not_done))
            self.logger.error(f"{error} after {self.timeout_seconds}s")
            security_logger.log_provisioning_operation(description, args, False)
            raise error

        security_logger.log_provisioning_operation(description, args, True)

    def _invoke(self, backend: Backend, method_name: str, description: str,
                args: tuple, token: CancellationToken) -> None:
        """Run one backend call on a worker thread."""
        name = backend.get_name()
        with bind_token(token):
            try:
                token.raise_if_cancelled()
                getattr(backend, method_name)(*args)
            except OperationCancelled:
                self.logger.debug(f"{name} stopped {description}: {token.reason}")
                raise
            except BackendOperationError as e:
                self.logger.error(f"{name} failed {description}: {e.cause or e}")
                raise
            except Exception as e:
                self.logger.error(f"{name} failed {description}: {e}")
                raise BackendOperationError(name, description, e) from e

        self.logger.info(f"{name} finished {description}")

    @staticmethod
    def _collect_failures(futures) -> List[BackendOperationError]:
        failures = []
        for future in futures:
            if future.done() and not future.cancelled():
                exception = future.exception()
                if isinstance(exception, BackendOperationError):
                    failures.append(exception)
        return failures

    @staticmethod
    def _pending(futures) -> List[str]:
        return [name for future, name in futures.items() if not future.done()]

    @staticmethod
    def _names(futures, subset) -> List[str]:
        return [name for future, name in futures.items() if future in subset]

    @staticmethod
    def _abandon(futures, token: CancellationToken, reason: str):
        token.cancel(reason)
        for future in futures:
            future.cancel()

    def close(self):
        """Shut down the worker pool without waiting for abandoned invocations."""
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
