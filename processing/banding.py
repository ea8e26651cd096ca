import logging
import threading

import numpy as np
import numpy.typing as npt
from scipy import ndimage

import drawing
import ellipse_fitting
import errors
import events
import image_buffer
import params
import tasks

logger = logging.getLogger(__name__)

_TASK = 'Banding reduction'


def reduce_banding(data: npt.NDArray,
                   ellipse: ellipse_fitting.Ellipse,
                   band_width: int):
  """Runs a single banding reduction pass, in place.

  Each row of the disk is rescaled so that its average matches the average
  of the rows within band_width of it. Only pixels within the ellipse are
  used and modified, and rows which do not cross the disk are left as is.
  """
  if band_width < 1:
    raise errors.InvalidParameter(
        f'Band width must be at least 1, but is {band_width}')
  mask = drawing.disk_mask(data.shape, ellipse)
  counts = np.count_nonzero(mask, axis=1)
  in_disk = counts > 0
  if not np.any(in_disk):
    return

  sums = np.sum(np.where(mask, data, 0), axis=1, dtype=np.float64)
  row_averages = np.zeros(data.shape[0])
  row_averages[in_disk] = sums[in_disk] / counts[in_disk]

  # Average of neighbouring rows, ignoring rows outside of the disk.
  weighted = ndimage.uniform_filter1d(
      row_averages, size=band_width, mode='nearest')
  weights = ndimage.uniform_filter1d(
      in_disk.astype(float), size=band_width, mode='nearest')
  band_averages = np.divide(weighted, weights, out=np.zeros_like(weighted),
                            where=weights > 0)

  correction = np.ones(data.shape[0])
  valid = row_averages > 0
  correction[valid] = band_averages[valid] / row_averages[valid]
  factors = np.where(mask, correction[:, np.newaxis], 1)
  data *= factors.astype(data.dtype)


class BandingCorrector:
  def __init__(self,
               broadcaster: events.Broadcaster,
               banding_params: params.BandingParams,
               interrupted: threading.Event | None = None):
    self.broadcaster = broadcaster
    self.params = banding_params
    self.interrupted = interrupted

  def correct(self, image: image_buffer.ImageBuffer,
              ellipse: ellipse_fitting.Ellipse) -> image_buffer.ImageBuffer:
    """Reduces banding of an image owned by the caller, in place."""
    self.broadcaster.broadcast(events.ProgressEvent(0, _TASK))
    passes = self.params.passes
    for i in range(passes):
      tasks.raise_if_interrupted(self.interrupted)
      reduce_banding(image.data, ellipse, self.params.width)
      self.broadcaster.broadcast(events.ProgressEvent((i + 1) / passes, _TASK))
    logger.debug('Applied %d banding reduction passes', passes)
    return image
