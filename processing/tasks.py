from collections.abc import Callable, Sequence
from concurrent import futures
import logging
import os
import threading
import traceback

import errors
import events

logger = logging.getLogger(__name__)


def raise_if_interrupted(interrupted: threading.Event | None):
  if interrupted is not None and interrupted.is_set():
    raise errors.ProcessingInterrupted('Processing was interrupted')


def default_parallelism() -> int:
  return max(1, os.cpu_count() or 1)


class ParallelExecutor:
  """Bounded worker pool running pipeline stages as independent tasks.

  Stages are chained with then() and all_of(), which register callbacks on
  the completion of their dependencies instead of blocking a worker thread.
  A stage failure is wrapped into a ProcessingFailure, broadcast as an
  ErrorEvent and recorded. Tasks depending on a failed task fail as well,
  without being run.
  """
  def __init__(self,
               broadcaster: events.Broadcaster | None = None,
               max_workers: int | None = None):
    self.broadcaster = broadcaster or events.Broadcaster()
    self.interrupted = threading.Event()
    self._pool = futures.ThreadPoolExecutor(
        max_workers=max_workers or default_parallelism(),
        thread_name_prefix='processing',
    )
    self._lock = threading.Lock()
    self._pending = set()
    self._idle = threading.Condition(self._lock)
    self._failures = []

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_value, tb):
    self.shutdown()

  def _track(self, future: futures.Future):
    with self._lock:
      self._pending.add(future)

    def untrack(done):
      with self._lock:
        self._pending.discard(done)
        if not self._pending:
          self._idle.notify_all()
    future.add_done_callback(untrack)

  def _record_failure(self, failure: BaseException):
    with self._lock:
      self._failures.append(failure)

  def _run(self, name: str, fn: Callable, *args):
    raise_if_interrupted(self.interrupted)
    try:
      return fn(*args)
    except (errors.ProcessingFailure, errors.ProcessingInterrupted):
      raise
    except Exception as e:
      failure = errors.ProcessingFailure(name, e)
      logger.exception('%s failed', name)
      self._record_failure(failure)
      self.broadcaster.broadcast(events.ErrorEvent(
          message=str(failure),
          detail=''.join(traceback.format_exception(e)),
      ))
      raise failure from e

  def submit(self, name: str, fn: Callable, *args) -> futures.Future:
    """Submits fn(*args) as a stage named name."""
    future = self._pool.submit(self._run, name, fn, *args)
    self._track(future)
    return future

  def then(self, future: futures.Future, name: str,
           fn: Callable) -> futures.Future:
    """Schedules fn(result) once future has completed successfully."""
    return self.all_of([future], name, fn)

  def all_of(self, dependencies: Sequence[futures.Future], name: str,
             fn: Callable) -> futures.Future:
    """Schedules fn(*results) once all dependencies have completed."""
    result = futures.Future()
    self._track(result)
    dependencies = list(dependencies)
    remaining = [len(dependencies)]
    lock = threading.Lock()

    def chain(inner: futures.Future):
      try:
        result.set_result(inner.result())
      except BaseException as e:
        result.set_exception(e)

    def on_done(_):
      with lock:
        remaining[0] -= 1
        if remaining[0] > 0:
          return
      for dependency in dependencies:
        if dependency.cancelled():
          result.cancel()
          return
        exception = dependency.exception()
        if exception is not None:
          result.set_exception(exception)
          return
      if not result.set_running_or_notify_cancel():
        return
      try:
        inner = self.submit(name, fn, *[d.result() for d in dependencies])
      except RuntimeError as e:
        # The pool was shut down while the dependencies were running.
        result.set_exception(e)
        return
      inner.add_done_callback(chain)

    if not dependencies:
      remaining[0] = 1
      on_done(None)
    for dependency in dependencies:
      dependency.add_done_callback(on_done)
    return result

  def interrupt(self):
    """Requests running stages to stop at their next safe point."""
    self.interrupted.set()

  def wait(self, timeout: float | None = None) -> bool:
    """Waits until no task is pending. Returns False on timeout."""
    with self._lock:
      return self._idle.wait_for(lambda: not self._pending, timeout)

  def failures(self) -> list[errors.ProcessingFailure]:
    with self._lock:
      return list(self._failures)

  def shutdown(self):
    self._pool.shutdown(wait=True)
