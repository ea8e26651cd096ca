"""Strategies remapping pixel intensities.

Strategies are immutable and validate their parameters when constructed.
They stretch buffers in place, so callers which do not own a buffer should
use stretched() to work on a copy.
"""
import logging

import numpy as np
import numpy.typing as npt
from skimage import exposure

import background
import constants
import errors
import filtering
import image_buffer

logger = logging.getLogger(__name__)

MAX = constants.MAX_PIXEL_VALUE


def _power_law(data: npt.NDArray, exponent: float):
  data[...] = MAX * (np.clip(data, 0, MAX) / MAX)**exponent


class StretchingStrategy:
  def stretch_data(self, data: npt.NDArray):
    raise NotImplementedError

  def stretch(self, image: image_buffer.ImageBuffer):
    self.stretch_data(image.data)

  def stretched(self, image: image_buffer.ImageBuffer
                ) -> image_buffer.ImageBuffer:
    copy = image.copy()
    self.stretch(copy)
    return copy

  def __repr__(self):
    args = ', '.join(f'{key}={value!r}' for key, value in vars(self).items())
    return f'{type(self).__name__}({args})'


class LinearStrategy(StretchingStrategy):
  """Maps the minimum and maximum of the buffer to lo and hi."""

  def __init__(self, lo: float = 0, hi: float = MAX):
    if not lo < hi:
      raise errors.InvalidParameter(
          f'Lower bound {lo} must be less than upper bound {hi}')
    self.lo = lo
    self.hi = hi

  def stretch_data(self, data: npt.NDArray):
    if data.size == 0:
      return
    vmin = float(np.min(data))
    vmax = float(np.max(data))
    if vmax > vmin:
      data[...] = (data - vmin) * ((self.hi - self.lo) / (vmax - vmin)) + self.lo
    else:
      data[...] = self.lo
    np.clip(data, self.lo, self.hi, out=data)


class CutoffStrategy(StretchingStrategy):
  """Clips values above ratio * high, then stretches linearly.

  When high is not given, the maximum of the buffer is used.
  """

  def __init__(self, ratio: float, high: float | None = None):
    if not 0 < ratio <= 1:
      raise errors.InvalidParameter(
          f'Cutoff ratio must be in (0, 1], but is {ratio}')
    if high is not None and not high > 0:
      raise errors.InvalidParameter(f'High bound must be positive, but is {high}')
    self.ratio = ratio
    self.high = high

  def stretch_data(self, data: npt.NDArray):
    if data.size == 0:
      return
    high = float(np.max(data)) if self.high is None else self.high
    np.clip(data, 0, self.ratio * high, out=data)
    LinearStrategy().stretch_data(data)


class DynamicCutoffStrategy(StretchingStrategy):
  """Clips values at a threshold between high and the buffer maximum.

  The threshold is high + shift * (max - high), so that a shift of 0 clips at
  high and a shift of 1 does not clip.
  """

  def __init__(self, shift: float, high: float):
    if not 0 <= shift <= 1:
      raise errors.InvalidParameter(f'Shift must be in [0, 1], but is {shift}')
    self.shift = shift
    self.high = high

  def stretch_data(self, data: npt.NDArray):
    if data.size == 0:
      return
    vmax = float(np.max(data))
    if 0 < self.high < vmax:
      threshold = self.high + self.shift * (vmax - self.high)
      np.clip(data, 0, threshold, out=data)
    LinearStrategy().stretch_data(data)


class GammaStrategy(StretchingStrategy):
  def __init__(self, gamma: float):
    if not gamma > 1:
      raise errors.InvalidParameter(
          f'Gamma must be greater than 1, but is {gamma}')
    self.gamma = gamma

  def stretch_data(self, data: npt.NDArray):
    _power_law(data, self.gamma)


class ArcsinhStrategy(StretchingStrategy):
  """Inverse hyperbolic sine stretch above the black point.

  The stretch factor is increased for dim images, proportionally to how far
  their maximum is from the maximum pixel value, up to max_stretch.
  """

  def __init__(self, black_point: float, stretch: float, max_stretch: float):
    if not 0 <= black_point < MAX:
      raise errors.InvalidParameter(
          f'Black point must be in [0, {MAX}), but is {black_point}')
    if not stretch > 0:
      raise errors.InvalidParameter(
          f'Stretch must be positive, but is {stretch}')
    if not max_stretch >= stretch:
      raise errors.InvalidParameter(
          f'Maximum stretch {max_stretch} is less than stretch {stretch}')
    self.black_point = black_point
    self.stretch_factor = stretch
    self.max_stretch = max_stretch

  def stretch_data(self, data: npt.NDArray):
    if data.size == 0:
      return
    vmax = float(np.max(data))
    if vmax <= self.black_point:
      data[...] = 0
      return
    stretch = min(self.max_stretch, self.stretch_factor * MAX / vmax)
    x = np.clip((data - self.black_point) / (MAX - self.black_point), 0, 1)
    data[...] = MAX * np.arcsinh(stretch * x) / np.arcsinh(stretch)


class ClaheStrategy(StretchingStrategy):
  """Contrast limited adaptive histogram equalization.

  Args:
    tiles: number of tiles along each axis.
    bins: number of histogram bins.
    clip_limit: clipping limit, normalized between 0 and 1. Higher values
      give more contrast.
  """

  def __init__(self, tiles: int, bins: int, clip_limit: float):
    if tiles < 1:
      raise errors.InvalidParameter(f'Tiles must be at least 1, but is {tiles}')
    if bins < 2:
      raise errors.InvalidParameter(f'Bins must be at least 2, but is {bins}')
    if not 0 < clip_limit <= 1:
      raise errors.InvalidParameter(
          f'Clip limit must be in (0, 1], but is {clip_limit}')
    self.tiles = tiles
    self.bins = bins
    self.clip_limit = clip_limit

  def stretch_data(self, data: npt.NDArray):
    if data.size == 0:
      return
    normalized = np.clip(np.asarray(data, dtype=float) / MAX, 0, 1)
    kernel_size = (max(1, data.shape[0] // self.tiles),
                   max(1, data.shape[1] // self.tiles))
    equalized = exposure.equalize_adapthist(
        normalized,
        kernel_size=kernel_size,
        clip_limit=self.clip_limit,
        nbins=self.bins,
    )
    data[...] = MAX * equalized


def histogram(data: npt.NDArray,
              bins: int = constants.HISTOGRAM_BINS) -> npt.NDArray:
  counts, _ = np.histogram(np.clip(data, 0, MAX), bins=bins,
                           range=(0, MAX + 1))
  return counts


def smooth_histogram(values: npt.NDArray) -> npt.NDArray:
  """Smooths with a (1, 2, 1) kernel, (2, 1) on the edges."""
  values = np.asarray(values, dtype=float)
  smoothed = np.empty(values.shape)
  smoothed[0] = (2 * values[0] + values[1]) / 3
  smoothed[1:-1] = (values[:-2] + 2 * values[1:-1] + values[2:]) / 4
  smoothed[-1] = (2 * values[-1] + values[-2]) / 3
  return smoothed


def find_rightmost_peak(values: npt.NDArray) -> int:
  """Returns the bin of the peak of interest in a smoothed histogram.

  The first local maximum is skipped since it is usually the background.
  Peaks are then scanned from right to left. A peak more than 100 times
  higher than the best peak so far is a jump past saturated pixels, it is
  selected and the scan stops. The scan also stops on the first peak lower
  than 25% of the best peak so far.

  Raises:
    InvalidArgument: if the histogram has no peak besides the first one.
  """
  peaks = []
  first = True
  for i in range(len(values) - 1):
    previous = 0 if i == 0 else values[i - 1]
    value = values[i]
    if value > previous and value > values[i + 1]:
      if first:
        first = False
        continue
      peaks.append((i, value))
  if not peaks:
    raise errors.InvalidArgument('Histogram has no peak.')

  peak_value = 0
  index = -1
  for i, value in reversed(peaks):
    if value > peak_value:
      index = i
      if peak_value != 0 and value > constants.PEAK_JUMP_FACTOR * peak_value:
        break
    elif index >= 0 and value < constants.PEAK_STOP_FRACTION * peak_value:
      break
    peak_value = max(peak_value, value)
  return index if index >= 0 else peaks[0][0]


def find_lo_hi(data: npt.NDArray) -> tuple[float, float]:
  """Returns the pixel values where the main peak drops to half its height.

  A bound is 0 when the histogram does not drop below half the peak height
  on that side.
  """
  values = smooth_histogram(histogram(data))
  bins = len(values)
  bin_width = (MAX + 1) / bins
  peak = find_rightmost_peak(values)
  cutoff = values[peak] / 2

  hi = 0.0
  for i in range(peak + 1, bins):
    if values[i] <= cutoff:
      hi = i * bin_width
      break
  lo = 0.0
  for i in range(peak - 1, -1, -1):
    if values[i] <= cutoff:
      lo = i * bin_width
      break
  return lo, hi


class AutohistogramStrategy(StretchingStrategy):
  """Stretches a solar disk image with automatic parameters.

  The disk is gamma stretched. When the buffer metadata holds the disk
  ellipse, pixels outside of the disk are taken from a second copy with its
  background removed and brightened, to reveal protuberances. The result is
  clipped above the main histogram peak, then blended with a CLAHE
  equalized copy.
  """

  def __init__(self, gamma: float = constants.DEFAULT_AUTOHISTOGRAM_GAMMA):
    if not gamma > 1:
      raise errors.InvalidParameter(
          f'Gamma must be greater than 1, but is {gamma}')
    self.gamma = gamma

  def stretch_data(self, data: npt.NDArray):
    self.stretch(image_buffer.ImageBuffer(data))

  def stretch(self, image: image_buffer.ImageBuffer):
    data = image.data
    disk = np.copy(data)
    GammaStrategy(self.gamma).stretch_data(disk)

    ellipse = image.metadata.find(image_buffer.MetadataKey.ELLIPSE)
    if ellipse is not None:
      protus = background.neutralize_background(data, ellipse)
      _power_law(protus, constants.PROTUS_GAMMA)
      mask = filtering.exterior_mask(data.shape, ellipse)
      weight = mask**(2 * self.gamma)
      disk = (1 - weight) * disk + weight * protus
    data[...] = disk

    try:
      _, hi = find_lo_hi(data)
      DynamicCutoffStrategy(constants.DYNAMIC_CUTOFF_SHIFT, hi).stretch_data(
          data)
    except errors.InvalidArgument as e:
      logger.warning('Skipping dynamic cutoff: %s', e)

    clahe = np.copy(data)
    ClaheStrategy(constants.CLAHE_TILES, constants.CLAHE_BINS,
                  constants.CLAHE_CLIP_LIMIT).stretch_data(clahe)
    data[...] = ((1 - constants.CLAHE_WEIGHT) * data +
                 constants.CLAHE_WEIGHT * clahe)
