"""Bounded-time execution of one operation in an isolated worker.

Each call gets its own worker, so an abandoned worker can never hand its
result to a later call:
  - Coroutine functions run as a separate ``asyncio.Task`` that is cancelled
    and detached on timeout.
  - Plain callables run in a dedicated daemon thread (``Isolation.THREAD``) or
    in a child process (``Isolation.PROCESS``). Threads cannot be killed, so a
    timed-out thread is abandoned and its outcome dropped. Processes are killed.
"""

import asyncio
import inspect
import multiprocessing
import pickle
import threading
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import StrEnum
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any

from callguard.circuit_breaker.exceptions import (
    ExecutionHarnessError,
    OperationError,
    OperationTimeoutError,
)

Operation = Callable[[], Any]

_EXIT_GRACE_SECONDS = 1.0


class Isolation(StrEnum):
    """How plain (non-async) callables are isolated from the caller."""

    THREAD = "thread"
    PROCESS = "process"


def _callable_name(func: Callable[..., object]) -> str:
    callable_name = getattr(func, "__qualname__", None)
    if callable_name is None:
        callable_name = getattr(func, "__name__", None)
    if callable_name is None:
        callable_name = func.__class__.__qualname__
    return str(callable_name)


def _qualified_type_name(exc: BaseException) -> str:
    exc_type = type(exc)
    return f"{exc_type.__module__}.{exc_type.__qualname__}"


def _is_async_callable(func: Callable[..., object]) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


async def resolve(value: object) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value


def _run_sync(operation: Operation) -> object:
    outcome = operation()
    if inspect.iscoroutine(outcome):
        # Plain callable returning a coroutine; drive it on a private loop.
        outcome = asyncio.run(outcome)
    return outcome


def _portable_error(exc: Exception) -> Exception:
    """Return ``exc`` if it survives pickling, else an ``OperationError``."""
    try:
        pickle.loads(pickle.dumps(exc))
    except Exception:
        return OperationError(
            str(exc) or type(exc).__qualname__,
            error_type=_qualified_type_name(exc),
        )
    return exc


def _process_entry(operation: Operation, sender: Connection) -> None:
    """Child-process body: run the operation and report ``(ok, payload)``."""
    try:
        outcome = _run_sync(operation)
    except Exception as exc:
        payload: tuple[bool, object] = (False, _portable_error(exc))
    else:
        payload = (True, outcome)

    try:
        sender.send(payload)
    except Exception as exc:
        sender.send(
            (
                False,
                OperationError(
                    f"result could not be transferred: {exc}",
                    error_type=_qualified_type_name(exc),
                ),
            )
        )
    finally:
        sender.close()


def _deliver(
    future: asyncio.Future[Any],
    outcome: object,
    error: BaseException | None,
) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(outcome)


def _post(
    loop: asyncio.AbstractEventLoop,
    future: asyncio.Future[Any],
    outcome: object = None,
    *,
    error: BaseException | None = None,
) -> None:
    """Resolve ``future`` from a worker thread."""
    # The loop may already be closed if the caller gave up on us.
    with suppress(RuntimeError):
        loop.call_soon_threadsafe(_deliver, future, outcome, error)


def _non_exception_failure(exc: BaseException) -> OperationError:
    return OperationError(
        f"operation raised {type(exc).__qualname__}: {exc}",
        error_type=_qualified_type_name(exc),
    )


def _read_worker_outcome(
    loop: asyncio.AbstractEventLoop,
    outcome: asyncio.Future[Any],
    receiver: Connection,
    process: BaseProcess,
) -> None:
    """Block on the worker pipe and resolve ``outcome`` with what it reports."""
    try:
        ok, payload = receiver.recv()
    except EOFError:
        process.join()
        _post(
            loop,
            outcome,
            error=OperationError(
                f"worker exited with code {process.exitcode} before reporting"
            ),
        )
    except Exception as exc:
        _post(
            loop,
            outcome,
            error=ExecutionHarnessError(f"unable to read worker outcome: {exc}"),
        )
    else:
        if ok:
            _post(loop, outcome, payload)
        else:
            _post(loop, outcome, error=payload)


def _retrieve_outcome(task: asyncio.Future[Any]) -> None:
    with suppress(asyncio.CancelledError, Exception):
        task.exception()


class BoundedExecutor:
    """Run operations under a hard wall-clock budget."""

    def __init__(
        self,
        isolation: Isolation = Isolation.THREAD,
        *,
        start_method: str | None = None,
    ) -> None:
        """Build an executor.

        Args:
            isolation: Worker kind used for plain callables.
            start_method: ``multiprocessing`` start method for
                ``Isolation.PROCESS``. Defaults to the platform default.
        """
        self.isolation = Isolation(isolation)
        self._start_method = start_method

    async def execute(self, operation: Operation, budget: float) -> Any:
        """Run ``operation`` and return its result within ``budget`` seconds.

        Args:
            operation: Zero-argument callable or coroutine function.
            budget: Seconds allowed. ``<= 0`` runs the operation inline with no
                bound.

        Returns:
            The operation's result.

        Raises:
            OperationTimeoutError: The budget elapsed first.
            ExecutionHarnessError: The worker could not be started or read.
            Exception: The operation's own exception. ``OperationError``
                replaces it when it could not cross a process boundary or
                was not an ``Exception`` (for example ``SystemExit``).
        """
        if budget <= 0:
            return await resolve(operation())
        if _is_async_callable(operation):
            return await self._run_as_task(operation, budget)
        if self.isolation == Isolation.PROCESS:
            return await self._run_in_process(operation, budget)
        return await self._run_in_daemon_thread(operation, budget)

    @staticmethod
    async def _wait(
        future: asyncio.Future[Any],
        budget: float,
        abandon: Callable[[], object],
    ) -> Any:
        try:
            done, _ = await asyncio.wait({future}, timeout=budget)
        except asyncio.CancelledError:
            abandon()
            raise
        if not done:
            abandon()
            raise OperationTimeoutError(budget)
        return future.result()

    async def _run_as_task(self, operation: Operation, budget: float) -> Any:
        async def _invoke() -> Any:
            return await operation()

        task = asyncio.create_task(
            _invoke(), name=f"callguard:{_callable_name(operation)}"
        )
        task.add_done_callback(_retrieve_outcome)
        return await self._wait(task, budget, task.cancel)

    async def _run_in_daemon_thread(self, operation: Operation, budget: float) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def _run() -> None:
            try:
                outcome = _run_sync(operation)
            except Exception as exc:
                _post(loop, future, error=exc)
            except BaseException as exc:
                # SystemExit and friends must not leave the caller waiting.
                _post(loop, future, error=_non_exception_failure(exc))
            else:
                _post(loop, future, outcome)

        thread = threading.Thread(
            target=_run,
            name=f"callguard:{_callable_name(operation)}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as exc:
            raise ExecutionHarnessError(f"unable to start worker thread: {exc}") from exc
        return await self._wait(future, budget, future.cancel)

    async def _run_in_process(self, operation: Operation, budget: float) -> Any:
        loop = asyncio.get_running_loop()
        ctx = multiprocessing.get_context(self._start_method)
        receiver, sender = ctx.Pipe(duplex=False)
        process = ctx.Process(
            target=_process_entry,
            args=(operation, sender),
            name=f"callguard:{_callable_name(operation)}",
            daemon=True,
        )
        try:
            process.start()
        except Exception as exc:
            receiver.close()
            sender.close()
            raise ExecutionHarnessError(
                f"unable to start worker process: {exc}"
            ) from exc
        sender.close()

        outcome: asyncio.Future[Any] = loop.create_future()
        reaped: asyncio.Future[Any] = loop.create_future()

        def _supervise() -> None:
            try:
                _read_worker_outcome(loop, outcome, receiver, process)
            finally:
                process.join(_EXIT_GRACE_SECONDS)
                if process.exitcode is None:
                    process.kill()
                    process.join()
                receiver.close()
                _post(loop, reaped, None)

        supervisor = threading.Thread(
            target=_supervise,
            name=f"callguard-supervisor:{process.pid}",
            daemon=True,
        )
        try:
            supervisor.start()
        except RuntimeError as exc:
            process.kill()
            process.join()
            receiver.close()
            raise ExecutionHarnessError(
                f"unable to supervise worker process: {exc}"
            ) from exc

        abandoned = False

        def _abandon() -> None:
            nonlocal abandoned
            abandoned = True
            outcome.cancel()
            process.kill()

        try:
            return await self._wait(outcome, budget, _abandon)
        finally:
            if abandoned:
                # SIGKILL was sent; reaping is prompt.
                await asyncio.shield(reaped)
