from __future__ import annotations

"""
Credential plugin lifecycle.

:class:`DatabasePlugin` is the host facing contract: initialize, new user,
update user, delete user and close. It is written once against
:class:`~dbcreds.core.database.connectors.base.BaseDatabaseConnector` and
works for any backend that implements that interface.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dbcreds.core.base import DBCredsManager
from dbcreds.core.config_manager import MISSING_USER_POLICIES
from dbcreds.core.connection_config import ConnectionConfig, normalize_connection_config
from dbcreds.core.credentials import UsernameMetadata, UsernamePolicy, generate_username, validate_password
from dbcreds.core.database.connectors.base import BaseDatabaseConnector
from dbcreds.core.locks import AsyncRWLock
from dbcreds.core.statements import Statements, execute_statements, render_statements, split_statements
from dbcreds.utils.exceptions import (
    BackendConnectionError,
    InvalidRequestError,
    NotFoundError,
    NotInitializedError,
    OperationCancelledError,
)

T = TypeVar('T')


class PluginState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZED = 'initialized'
    CLOSED = 'closed'


class InitializeRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)
    verify_connection: bool = False


class InitializeResponse(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)


class NewUserRequest(BaseModel):
    username_config: UsernameMetadata = Field(default_factory=UsernameMetadata)
    statements: Statements = Field(default_factory=Statements)
    password: str = ""
    expiration: Optional[datetime] = None


class NewUserResponse(BaseModel):
    username: str


class ChangePassword(BaseModel):
    new_password: str
    statements: Statements = Field(default_factory=Statements)


class ChangeExpiration(BaseModel):
    new_expiration: datetime
    statements: Statements = Field(default_factory=Statements)


class UpdateUserRequest(BaseModel):
    username: str
    password: Optional[ChangePassword] = None
    expiration: Optional[ChangeExpiration] = None


class UpdateUserResponse(BaseModel):
    pass


class DeleteUserRequest(BaseModel):
    username: str
    statements: Statements = Field(default_factory=Statements)


class DeleteUserResponse(BaseModel):
    pass


class PluginSettings(BaseModel):
    """Behavioural knobs, normally read from the ``plugin`` config section."""

    model_config = ConfigDict(frozen=True)

    missing_user_policy: str = 'strict'
    password_min_length: int = Field(default=1, ge=1)
    username: UsernamePolicy = Field(default_factory=UsernamePolicy)

    @field_validator('missing_user_policy')
    @classmethod
    def _check_policy(cls, value: str) -> str:
        if value not in MISSING_USER_POLICIES:
            raise ValueError(f"missing_user_policy must be one of {', '.join(MISSING_USER_POLICIES)}")
        return value


class DatabasePlugin(DBCredsManager):
    """Lifecycle state machine for one dynamic credential backend.

    ``initialize`` and ``close`` are exclusive; credential operations share
    the connector and may run concurrently. Every operation accepts a
    ``timeout`` in seconds and a ``cancel_event``; when either fires the
    backend call is abandoned and :class:`OperationCancelledError` is raised.
    """

    def __init__(
            self,
            connector_class: Type[BaseDatabaseConnector],
            *,
            settings: Optional[PluginSettings] = None,
            logger: Any = None,
            **connector_kwargs: Any
    ) -> None:
        """Initialize the plugin.

        Args:
            connector_class: Backend connector to instantiate on initialize
            settings: Plugin settings
            logger: Logger instance
            **connector_kwargs: Extra keyword arguments for the connector
        """
        super().__init__(name=f'{connector_class.type_name}_plugin')
        self._connector_class = connector_class
        self._connector_kwargs = connector_kwargs
        self._settings = settings or PluginSettings()
        self._connector: Optional[BaseDatabaseConnector] = None
        self._config: Optional[ConnectionConfig] = None
        self._state = PluginState.UNINITIALIZED
        self._lock = AsyncRWLock()
        if logger:
            self.set_logger(logger)

    @property
    def state(self) -> PluginState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state == PluginState.INITIALIZED

    @property
    def settings(self) -> PluginSettings:
        return self._settings

    def type(self) -> str:
        """Backend type name."""
        return self._connector_class.type_name

    def secret_values(self) -> Dict[str, str]:
        """Redaction map for the current connection config."""
        return self._config.secret_values() if self._config else {}

    async def initialize(
            self,
            request: InitializeRequest,
            *,
            timeout: Optional[float] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> InitializeResponse:
        """Configure the plugin with a connection config.

        Calling this again replaces the previous connection. If verification
        fails the previous state is left as it was.

        Args:
            request: The initialize request
            timeout: Deadline in seconds
            cancel_event: Event that abandons the operation when set

        Returns:
            InitializeResponse: The normalized config, ``port`` as an int

        Raises:
            MissingFieldError: If a required field is absent
            InvalidConfigError: If a field cannot be coerced
            BackendConnectionError: If verification was requested and failed
            OperationCancelledError: If the deadline or cancel event fired
        """
        return await self._guarded('initialize', self._initialize(request), timeout, cancel_event)

    async def _initialize(self, request: InitializeRequest) -> InitializeResponse:
        config = normalize_connection_config(request.config)
        async with self._lock.write():
            connector = self._connector_class(config, logger=self.logger, **self._connector_kwargs)
            if request.verify_connection:
                verified = False
                try:
                    await connector.connect()
                    await connector.ping()
                    verified = True
                except BackendConnectionError as e:
                    self.logger.warning(
                        f'Connection verification failed: {e.message}',
                        extra={'address': config.address, 'backend': self.type()}
                    )
                    raise
                finally:
                    if not verified:
                        await connector.disconnect()

            previous = self._connector
            self._connector = connector
            self._config = config
            self._state = PluginState.INITIALIZED
            self._healthy = True
            if previous is not None:
                await previous.disconnect()

        self.logger.info(
            f'Initialized {self.type()} plugin',
            extra={'address': config.address, 'verified': request.verify_connection}
        )
        return InitializeResponse(config=config.to_dict())

    async def new_user(
            self,
            request: NewUserRequest,
            *,
            timeout: Optional[float] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> NewUserResponse:
        """Create a user with a generated name and the supplied password.

        Args:
            request: The new user request
            timeout: Deadline in seconds
            cancel_event: Event that abandons the operation when set

        Returns:
            NewUserResponse: The generated username

        Raises:
            NotInitializedError: If the plugin is not initialized
            PolicyViolationError: If the password is rejected
            InvalidRequestError: If no creation statements remain after rendering
            StatementError: If a statement fails; nothing is rolled back
        """
        return await self._guarded('new_user', self._new_user(request), timeout, cancel_event)

    async def _new_user(self, request: NewUserRequest) -> NewUserResponse:
        async with self._lock.read():
            connector = self._require_connector('create user')
            password = validate_password(request.password, self._settings.password_min_length)
            username = generate_username(
                request.username_config,
                connector.max_username_length,
                self._settings.username
            )

            statements = self._render(connector, request.statements.commands, username, password)
            if not statements:
                raise InvalidRequestError('No creation statements were supplied')

            await self._execute(connector, statements, password)
            if request.expiration is not None and connector.supports_expiration:
                await connector.connect()
                await connector.set_expiration(username, request.expiration)

        self.logger.info('Created user', extra={'username': username, 'backend': self.type()})
        return NewUserResponse(username=username)

    async def update_user(
            self,
            request: UpdateUserRequest,
            *,
            timeout: Optional[float] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> UpdateUserResponse:
        """Change a user's password and/or expiration.

        Args:
            request: The update request
            timeout: Deadline in seconds
            cancel_event: Event that abandons the operation when set

        Returns:
            UpdateUserResponse: Empty response

        Raises:
            NotInitializedError: If the plugin is not initialized
            InvalidRequestError: If neither a password nor an expiration change was requested
            StatementError: If the rotation fails
        """
        return await self._guarded('update_user', self._update_user(request), timeout, cancel_event)

    async def _update_user(self, request: UpdateUserRequest) -> UpdateUserResponse:
        async with self._lock.read():
            connector = self._require_connector('update user')
            if not request.username:
                raise InvalidRequestError('username cannot be empty')
            if request.password is None and request.expiration is None:
                raise InvalidRequestError('No password or expiration change was requested')

            if request.password is not None:
                await self._change_password(connector, request.username, request.password)
            if request.expiration is not None:
                await self._change_expiration(connector, request.username, request.expiration)

        return UpdateUserResponse()

    async def _change_password(
            self,
            connector: BaseDatabaseConnector,
            username: str,
            change: ChangePassword
    ) -> None:
        password = validate_password(change.new_password, self._settings.password_min_length)
        statements = self._render(connector, change.statements.commands, username, password)
        if not statements:
            statements = self._render(connector, connector.default_rotation_statements, username, password)

        if statements:
            await self._execute(connector, statements, password)
        else:
            await connector.connect()
            await connector.rotate_password(username, password)
        self.logger.info('Rotated password', extra={'username': username, 'backend': self.type()})

    async def _change_expiration(
            self,
            connector: BaseDatabaseConnector,
            username: str,
            change: ChangeExpiration
    ) -> None:
        statements = self._render(connector, change.statements.commands, username, '')
        if statements:
            await self._execute(connector, statements, '')
        elif connector.supports_expiration:
            await connector.connect()
            await connector.set_expiration(username, change.new_expiration)
        else:
            self.logger.info(
                f'{self.type()} has no account expiry, ignoring expiration change',
                extra={'username': username, 'expiration': change.new_expiration.isoformat()}
            )
            return
        self.logger.info('Changed expiration', extra={'username': username, 'backend': self.type()})

    async def delete_user(
            self,
            request: DeleteUserRequest,
            *,
            timeout: Optional[float] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> DeleteUserResponse:
        """Remove a user.

        A user that no longer exists is an error under the ``strict``
        missing-user policy and a success under ``ignore``.

        Args:
            request: The delete request
            timeout: Deadline in seconds
            cancel_event: Event that abandons the operation when set

        Returns:
            DeleteUserResponse: Empty response

        Raises:
            NotInitializedError: If the plugin is not initialized
            NotFoundError: If the user does not exist and the policy is strict
            StatementError: If a deletion statement fails
            BackendConnectionError: If the backend cannot be reached
        """
        return await self._guarded('delete_user', self._delete_user(request), timeout, cancel_event)

    async def _delete_user(self, request: DeleteUserRequest) -> DeleteUserResponse:
        async with self._lock.read():
            connector = self._require_connector('delete user')
            if not request.username:
                raise InvalidRequestError('username cannot be empty')

            statements = self._render(connector, request.statements.commands, request.username, '')
            if not statements:
                statements = self._render(connector, connector.default_deletion_statements, request.username, '')
            if not statements:
                raise InvalidRequestError('No deletion statements were supplied')

            try:
                await self._execute(connector, statements, '')
            except NotFoundError as e:
                if self._settings.missing_user_policy != 'ignore':
                    e.username = request.username
                    e.details['username'] = request.username
                    raise
                self.logger.warning(
                    'User was already gone, treating delete as successful',
                    extra={'username': request.username, 'backend': self.type()}
                )
                return DeleteUserResponse()

        self.logger.info('Deleted user', extra={'username': request.username, 'backend': self.type()})
        return DeleteUserResponse()

    async def close(
            self,
            *,
            timeout: Optional[float] = None,
            cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Release the connection. Safe to call repeatedly and before initialize."""
        await self._guarded('close', self._close(), timeout, cancel_event)

    async def _close(self) -> None:
        async with self._lock.write():
            connector = self._connector
            self._connector = None
            self._config = None
            was_initialized = self._state == PluginState.INITIALIZED
            if was_initialized:
                self._state = PluginState.CLOSED
            self._healthy = False
            if connector is not None:
                await connector.disconnect()
        if was_initialized:
            self.logger.info(f'Closed {self.type()} plugin')

    async def shutdown(self) -> None:
        await self.close()

    def status(self) -> Dict[str, Any]:
        status = super().status()
        status.update({
            'initialized': self.initialized,
            'state': self._state.value,
            'type': self.type(),
            'settings': self._settings.model_dump(),
            'lock': self._lock.status(),
        })
        if self._connector is not None:
            status['connection'] = self._connector.get_connection_info()
        return status

    def _require_connector(self, operation: str) -> BaseDatabaseConnector:
        if self._state != PluginState.INITIALIZED or self._connector is None:
            raise NotInitializedError(operation, plugin_name=self.name)
        return self._connector

    def _render(
            self,
            connector: BaseDatabaseConnector,
            templates: Sequence[str],
            username: str,
            password: str
    ) -> List[str]:
        if connector.split_statements:
            templates = split_statements(templates)
        return render_statements(templates, username=username, password=password)

    async def _execute(self, connector: BaseDatabaseConnector, statements: Sequence[str], password: str) -> None:
        # Handles are opened lazily when initialize skipped verification.
        await connector.connect()
        await execute_statements(
            connector,
            statements,
            secrets=(password, connector.config.password),
            log=self.logger
        )

    async def _guarded(
            self,
            operation: str,
            coro: Awaitable[T],
            timeout: Optional[float],
            cancel_event: Optional[asyncio.Event]
    ) -> T:
        """Run ``coro`` until it finishes, the deadline passes or the event fires."""
        if timeout is None and cancel_event is None:
            return await coro

        if cancel_event is not None and cancel_event.is_set():
            getattr(coro, 'close', lambda: None)()
            raise OperationCancelledError(operation, 'cancelled')

        task = asyncio.ensure_future(coro)
        waiters = {task}
        cancel_waiter: Optional[asyncio.Task] = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        reason = 'cancelled' if cancel_event is not None and cancel_event.is_set() else 'timed out'
        self.logger.warning(f'{operation} {reason}', extra={'operation': operation, 'timeout': timeout})
        raise OperationCancelledError(operation, reason, timeout=timeout)
