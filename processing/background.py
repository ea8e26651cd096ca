import logging

import numpy as np
import numpy.typing as npt

import drawing
import ellipse_fitting

logger = logging.getLogger(__name__)

# Returned when no background pixel is available.
UNSET_BLACK_POINT = 0.0

# Maximum number of pixels used to fit the background polynomial.
_MAX_FIT_SAMPLES = 100_000


def estimate_black_point(data: npt.NDArray,
                         ellipse: ellipse_fitting.Ellipse) -> float:
  """Estimates the background level outside of the sun disk.

  Only positive pixels outside the ellipse are used. Each pixel value is
  weighted by its distance to the image center, normalized by the mean image
  dimension, so that pixels in the corners weigh more than pixels close to
  the limb. The estimate is the mean of the weighted values, which is what
  the running update avg += (offcenter * v - avg) / n converges to.
  """
  height, width = data.shape
  x, y = drawing.pixel_grid(data.shape)
  selected = np.logical_and(np.logical_not(ellipse.is_within(x, y)), data > 0)
  if not np.any(selected):
    logger.info('No background pixel, black point is unset')
    return UNSET_BLACK_POINT

  cx = width / 2
  cy = height / 2
  offcenter = 2 * np.sqrt((x[selected] - cx)**2 + (y[selected] - cy)**2) / (
      width + height)
  black_point = float(np.mean(offcenter * data[selected], dtype=np.float64))
  logger.info('Black estimate %f', black_point)
  return black_point


def neutralize_background(data: npt.NDArray,
                          ellipse: ellipse_fitting.Ellipse) -> npt.NDArray:
  """Subtracts a smooth background fitted outside of the disk.

  A second order polynomial in x and y is fitted to the pixels outside of the
  ellipse, then subtracted from the whole image. Negative values are clipped.
  """
  height, width = data.shape
  x, y = drawing.pixel_grid(data.shape)
  outside = np.logical_not(ellipse.is_within(x, y))
  if np.count_nonzero(outside) < 6:
    return np.copy(data)

  # Normalized coordinates keep the least squares problem well conditioned.
  u = (x - width / 2) / max(width, 1)
  v = (y - height / 2) / max(height, 1)

  def design(u, v):
    return np.stack((np.ones(u.shape), u, v, u**2, u * v, v**2), axis=-1)

  step = max(1, int(np.ceil(np.count_nonzero(outside) / _MAX_FIT_SAMPLES)))
  samples = np.flatnonzero(outside)[::step]
  p_fit, _, _, _ = np.linalg.lstsq(
      design(u.flat[samples], v.flat[samples]),
      np.asarray(data, dtype=float).flat[samples],
      rcond=None,
  )
  background = design(u, v) @ p_fit
  return np.clip(data - background, a_min=0, a_max=None).astype(np.float32)
