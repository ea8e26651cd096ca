class ProcessingError(Exception):
  """Base class for errors raised by the reconstruction pipeline."""


class RegressionError(ProcessingError):
  """Raised when no ellipse can be fitted to a set of points."""


class InvalidParameter(ProcessingError, ValueError):
  """Raised when a strategy or stage is configured with out of range values."""


class InvalidArgument(ProcessingError, ValueError):
  """Raised when an operation receives data it cannot work with."""


class ProcessingInterrupted(ProcessingError):
  pass


class ProcessingFailure(ProcessingError):
  """Wraps an unexpected failure of a pipeline stage.

  The failure aborts the pipeline of a single scan, sibling scans keep going.
  """
  def __init__(self, stage: str, cause: BaseException):
    super().__init__(f'{stage} failed: {cause}')
    self.stage = stage
    self.cause = cause
