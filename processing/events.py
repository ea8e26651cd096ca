import dataclasses
import logging
import threading

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
  progress: float
  task: str


@dataclasses.dataclass(frozen=True)
class SuggestionEvent:
  message: str


@dataclasses.dataclass(frozen=True)
class WarningEvent:
  message: str


@dataclasses.dataclass(frozen=True)
class ErrorEvent:
  message: str
  detail: str = ''


class Broadcaster:
  """Receives progress and diagnostic events. Ignores them by default."""

  def broadcast(self, event):
    pass


class LoggingBroadcaster(Broadcaster):
  def broadcast(self, event):
    if isinstance(event, ProgressEvent):
      logger.debug('%s: %.0f%%', event.task, 100 * event.progress)
    elif isinstance(event, SuggestionEvent):
      logger.info('Suggestion: %s', event.message)
    elif isinstance(event, WarningEvent):
      logger.warning(event.message)
    elif isinstance(event, ErrorEvent):
      logger.error('%s\n%s', event.message, event.detail)


class CollectingBroadcaster(Broadcaster):
  """Records events. Safe to use from several worker threads."""

  def __init__(self):
    self._lock = threading.Lock()
    self._events = []

  def broadcast(self, event):
    with self._lock:
      self._events.append(event)

  def events(self, event_type: type | None = None) -> list:
    with self._lock:
      events = list(self._events)
    if event_type is None:
      return events
    return [event for event in events if isinstance(event, event_type)]
