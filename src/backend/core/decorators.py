"""
Centralized error handling decorators for database operations.
Provides reusable decorators that wrap service methods with transaction
handling, database error classification and operation logging.

Lifecycle errors (core.exceptions.RequestDeskError) are expected outcomes,
not failures: they roll back the transaction and propagate unlogged.
"""
import functools
import inspect
import logging
import traceback
from typing import Any, Callable, Optional

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InvalidRequestError,
    OperationalError,
    PendingRollbackError,
    SQLAlchemyError,
    StatementError,
    TimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import RequestDeskError

logger = logging.getLogger(__name__)


class DatabaseErrorHandler:
    """Centralized database error handling utilities."""

    DATABASE_EXCEPTIONS = (
        SQLAlchemyError,
        IntegrityError,
        OperationalError,
        DisconnectionError,
        TimeoutError,
        StatementError,
        InvalidRequestError,
        PendingRollbackError,
        ConnectionError,
    )

    @staticmethod
    def handle_database_error(
        exc: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> tuple[bool, str]:
        """
        Classify a database error and log it.

        Args:
            exc: The exception that occurred
            operation: Description of the database operation
            context: Additional context information

        Returns:
            Tuple of (is_recoverable, error_message)
        """
        context_str = f" | Context: {context}" if context else ""

        if isinstance(exc, IntegrityError):
            error_msg = f"Database integrity error during {operation}: {str(exc)}{context_str}"
            logger.warning(error_msg)
            return False, error_msg

        elif isinstance(exc, (ConnectionError, DisconnectionError)):
            error_msg = f"Database connection error during {operation}: {str(exc)}{context_str}"
            logger.error(error_msg)
            return True, error_msg

        elif isinstance(exc, TimeoutError):
            error_msg = f"Database timeout during {operation}: {str(exc)}{context_str}"
            logger.warning(error_msg)
            return True, error_msg

        elif isinstance(exc, OperationalError):
            error_msg = f"Database operational error during {operation}: {str(exc)}{context_str}"
            logger.error(error_msg)
            return True, error_msg

        elif isinstance(exc, StatementError):
            error_msg = f"Database statement error during {operation}: {str(exc)}{context_str}"
            logger.warning(error_msg)
            return False, error_msg

        else:
            error_msg = f"Unexpected database error during {operation}: {type(exc).__name__}: {str(exc)}{context_str}"
            logger.error(f"{error_msg}\nTraceback: {traceback.format_exc()}")
            return False, error_msg


def _find_session(args: tuple, kwargs: dict) -> Optional[AsyncSession]:
    for value in (*args, *kwargs.values()):
        if isinstance(value, AsyncSession):
            return value
    return None


def handle_database_exceptions(
    operation_name: Optional[str] = None,
    reraise: bool = True,
    default_return: Any = None,
) -> Callable:
    """
    Decorator to wrap async database operations with error handling.

    Args:
        operation_name: Name of the operation for logging (defaults to function name)
        reraise: Whether to re-raise database errors after logging
        default_return: Value to return if a database error occurs and reraise=False

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            operation = operation_name or getattr(func, "__name__", "unknown")
            context = {
                "function": getattr(func, "__name__", "unknown"),
                "args_count": len(args),
                "kwargs_keys": list(kwargs.keys()) if kwargs else [],
            }

            try:
                result = await func(*args, **kwargs)
                logger.debug(f"Successfully completed {operation}")
                return result

            except RequestDeskError as exc:
                logger.debug(f"{operation} rejected: {exc.code}: {exc.detail}")
                raise

            except DatabaseErrorHandler.DATABASE_EXCEPTIONS as exc:
                DatabaseErrorHandler.handle_database_error(exc, operation, context)

                if reraise:
                    raise
                logger.info(
                    f"Operation {operation} failed but continuing with default return: {default_return}"
                )
                return default_return

            except Exception as exc:
                error_msg = f"Unexpected error in {operation}: {type(exc).__name__}: {str(exc)}"
                logger.error(f"{error_msg}\nTraceback: {traceback.format_exc()}")

                if reraise:
                    raise
                return default_return

        return async_wrapper

    return decorator


def database_transaction(
    operation_name: Optional[str] = None,
    commit_on_success: bool = True,
    rollback_on_error: bool = True
) -> Callable:
    """
    Decorator to handle database transactions with proper commit/rollback.

    Everything the wrapped coroutine writes through the session is committed
    together or rolled back together.

    Args:
        operation_name: Name of the operation for logging
        commit_on_success: Whether to commit on successful completion
        rollback_on_error: Whether to rollback on error

    Returns:
        Decorated function with transaction handling
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            logger.warning(f"database_transaction decorator used on sync function {func.__name__}")
            return func

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            operation = operation_name or getattr(func, "__name__", "unknown")
            db_session = _find_session(args, kwargs)

            if not db_session:
                logger.warning(f"No AsyncSession found for transaction operation {operation}")
                return await func(*args, **kwargs)

            try:
                logger.debug(f"Starting database transaction for {operation}")
                result = await func(*args, **kwargs)

                if commit_on_success:
                    await db_session.commit()
                    logger.debug(f"Transaction committed for {operation}")

                return result

            except Exception:
                if rollback_on_error:
                    try:
                        await db_session.rollback()
                        logger.debug(f"Transaction rolled back for {operation}")
                    except Exception as rollback_exc:
                        logger.error(f"Failed to rollback transaction for {operation}: {rollback_exc}")
                raise

        return async_wrapper

    return decorator


def log_database_operation(
    operation: str,
    level: str = "debug"
) -> Callable:
    """
    Decorator to log database operations with context.

    Args:
        operation: Description of the operation
        level: Logging level ('debug', 'info', 'warning', 'error')

    Returns:
        Decorated function with operation logging
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            logger_method = getattr(logger, level)
            func_name = getattr(func, "__name__", "unknown")
            logger_method(f"Starting {operation} via {func_name}")

            try:
                result = await func(*args, **kwargs)
                logger_method(f"Completed {operation} via {func_name}")
                return result
            except RequestDeskError as exc:
                logger_method(f"Rejected {operation} via {func_name}: {exc.code}")
                raise
            except Exception as exc:
                logger_method(f"Failed {operation} via {func_name}: {str(exc)}")
                raise

        return async_wrapper

    return decorator


def safe_database_query(func=None, operation_name: Optional[str] = None, default_return: Any = None) -> Callable:
    """
    Read decorator that turns database errors into a default return value.

    Lifecycle errors still propagate. Can be used with or without parentheses:
        @safe_database_query
        @safe_database_query("name", default_return=[])
    """
    def decorator(f: Callable) -> Callable:
        return handle_database_exceptions(
            operation_name=operation_name,
            reraise=False,
            default_return=default_return,
        )(f)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        return safe_database_query(operation_name=func, default_return=default_return)


def critical_database_operation(func=None, operation_name: Optional[str] = None) -> Callable:
    """
    Decorator for reads that must succeed: errors are logged and re-raised.
    """
    def decorator(f: Callable) -> Callable:
        return handle_database_exceptions(operation_name=operation_name, reraise=True)(f)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        return critical_database_operation(operation_name=func)


def transactional_database_operation(func=None, operation_name: Optional[str] = None) -> Callable:
    """
    Combined decorator for transactional writes with error handling.

    Can be used with or without parentheses:
        @transactional_database_operation
        @transactional_database_operation("operation_name")
    """
    def decorator(f: Callable) -> Callable:
        transaction_decorated = database_transaction(operation_name=operation_name)(f)
        return handle_database_exceptions(operation_name=operation_name, reraise=True)(transaction_decorated)

    if func is None:
        return decorator
    elif callable(func):
        return decorator(func)
    else:
        return transactional_database_operation(operation_name=func)
