"""Processing of several scans at once."""
from collections.abc import Callable, Sequence
from concurrent import futures
import dataclasses
import logging
import os
import threading

import errors
import workflow

logger = logging.getLogger(__name__)


def default_concurrent_scans() -> int:
  return max(1, (os.cpu_count() or 1) // 4)


@dataclasses.dataclass
class BatchItemResult:
  name: str
  result: workflow.SessionResult | None = None
  error: BaseException | None = None

  @property
  def succeeded(self) -> bool:
    return (self.error is None and self.result is not None and
            self.result.succeeded)


def process_batch(
    items: Sequence[tuple[str, Callable[[], workflow.SessionResult]]],
    max_concurrent: int | None = None) -> list[BatchItemResult]:
  """Processes scans concurrently, a bounded number at a time.

  Args:
    items: (name, process) pairs, where process runs the processing session
      of a scan.
    max_concurrent: maximum number of scans processed at the same time,
      a quarter of the available processors by default.

  Returns:
    one result per item, in the order of items. A scan failing does not stop
    the processing of the others.
  """
  if max_concurrent is not None and max_concurrent < 1:
    raise errors.InvalidParameter(
        f'At least one scan must be processed at a time, but got '
        f'{max_concurrent}')
  limit = max_concurrent or default_concurrent_scans()
  permits = threading.Semaphore(limit)

  def process(name: str, fn: Callable[[], workflow.SessionResult]
              ) -> BatchItemResult:
    with permits:
      logger.info('Processing %s', name)
      try:
        result = fn()
      except Exception as e:
        logger.exception('Processing of %s failed', name)
        return BatchItemResult(name, error=e)
    if not result.succeeded:
      logger.warning('Processing of %s completed with %d failures', name,
                     len(result.failures))
    return BatchItemResult(name, result=result)

  if not items:
    return []
  with futures.ThreadPoolExecutor(
      max_workers=min(len(items), limit), thread_name_prefix='batch') as pool:
    pending = [pool.submit(process, name, fn) for name, fn in items]
    return [future.result() for future in pending]
