import dataclasses
import logging
import threading

import numpy as np
import numpy.typing as npt
from scipy import ndimage

import constants
import ellipse_fitting
import errors
import events
import image_buffer
import params
import tasks

logger = logging.getLogger(__name__)

_TASK = 'Correcting geometry'

# Number of rows processed between two interruption checks.
_ROWS_PER_CHECK = 64


@dataclasses.dataclass(frozen=True)
class ShearAndScale:
  """Maps source pixel coordinates to corrected pixel coordinates."""
  shear: float
  offset: float
  sx: float
  sy: float

  def apply(self, x: float, y: float) -> tuple[float, float]:
    return (float((x + y * self.shear + self.offset) * self.sx),
            float(y * self.sy))


@dataclasses.dataclass(frozen=True)
class GeometryResult:
  """Output of the geometry correction.

  Attributes:
    corrected: corrected buffer. Its metadata holds the corrected ellipse.
    ellipse: corrected ellipse in the coordinates of the corrected buffer,
      or the ellipse of the source buffer if it could not be recomputed.
    disk: ellipse used to crop, in corrected coordinates before cropping.
      Processing of the other pixel shifts of the same scan reuses it so that
      all images are cropped identically.
  """
  corrected: image_buffer.ImageBuffer
  ellipse: ellipse_fitting.Ellipse
  disk: ellipse_fitting.Ellipse


def shear_image(data: npt.NDArray, shear: float,
                interrupted: threading.Event | None = None
                ) -> tuple[npt.NDArray, float]:
  """Shifts each row y horizontally by y * shear.

  Each source pixel is split between the two target columns surrounding its
  fractional position, and contributions are accumulated. The output is wide
  enough for no content to be clipped, and the columns left uncovered are
  filled by replicating the first and last pixel of each row.

  Returns:
    the sheared image and the horizontal offset added to all rows to keep
    target columns positive.
  """
  height, width = data.shape
  if shear == 0:
    return np.copy(data), 0.0

  max_dx = height * shear
  offset = max(0.0, -max_dx)
  new_width = width + int(np.ceil(abs(max_dx))) + 1
  sheared = np.zeros((height, new_width), dtype=np.float32)
  for y in range(height):
    if y % _ROWS_PER_CHECK == 0:
      tasks.raise_if_interrupted(interrupted)
    row = data[y]
    shift = y * shear + offset
    i = int(np.floor(shift))
    frac = np.float32(shift - i)
    sheared[y, i:i + width] += (1 - frac) * row
    sheared[y, i + 1:i + width + 1] += frac * row
    sheared[y, :i] = row[0]
    sheared[y, i] += frac * row[0]
    sheared[y, i + width + 1:] = row[-1]
    sheared[y, i + width] += (1 - frac) * row[-1]
  return sheared, offset


def compute_scale(xy_ratio: float,
                  disallow_downsampling: bool) -> tuple[float, float]:
  """Returns the (sx, sy) scale factors which make the disk circular."""
  if xy_ratio < 1:
    sx, sy = 1 / xy_ratio, 1.0
  else:
    sx, sy = 1.0, xy_ratio
  if not disallow_downsampling:
    norm = max(sx, sy)
    sx, sy = sx / norm, sy / norm
  return sx, sy


def rescale(data: npt.NDArray, sx: float, sy: float,
            fill_value: float = 0) -> npt.NDArray:
  """Scales an image with bilinear interpolation."""
  if sx == 1 and sy == 1:
    return data
  output_shape = (max(1, int(round(data.shape[0] * sy))),
                  max(1, int(round(data.shape[1] * sx))))
  return ndimage.affine_transform(
      np.asarray(data, dtype=np.float32),
      (1 / sy, 1 / sx),
      output_shape=output_shape,
      order=1,
      mode='constant',
      cval=fill_value,
  )


def crop_to_square(data: npt.NDArray,
                   center: tuple[float, float],
                   side: int) -> tuple[npt.NDArray, tuple[int, int]]:
  """Crops a square centered on center, padding with zeros if needed.

  Returns:
    the cropped image and the (x, y) position of its origin in data.
  """
  x0 = int(round(center[0] - side / 2))
  y0 = int(round(center[1] - side / 2))
  cropped = np.zeros((side, side), dtype=data.dtype)

  src_x0, src_y0 = max(x0, 0), max(y0, 0)
  src_x1 = min(x0 + side, data.shape[1])
  src_y1 = min(y0 + side, data.shape[0])
  if src_x1 > src_x0 and src_y1 > src_y0:
    cropped[src_y0 - y0:src_y1 - y0, src_x0 - x0:src_x1 - x0] = data[
        src_y0:src_y1, src_x0:src_x1]
  return cropped, (x0, y0)


def _remap_redshift_areas(metadata: image_buffer.Metadata,
                          transform) -> image_buffer.Metadata:
  areas = metadata.find(image_buffer.MetadataKey.REDSHIFT_AREAS)
  if not areas:
    return metadata
  return metadata.with_value(
      image_buffer.MetadataKey.REDSHIFT_AREAS,
      tuple(area.transform(transform) for area in areas),
  )


class GeometryCorrector:
  """Corrects the shear and the x/y ratio of a reconstructed disk.

  Args:
    broadcaster: receives progress events and suggestions.
    geometry_params: forced x/y ratio, autocrop and downsampling options. The
      forced tilt is taken into account by the caller, which passes the
      effective tilt to correct().
    frame_rate: frame rate of the scan, in fps, if known. Used to suggest a
      better exposure when the scan is undersampled.
    black_point: value used to fill pixels which have no source pixel.
    reference_disk: disk found when correcting the first pixel shift of the
      scan, used to crop all pixel shifts identically.
  """
  def __init__(self,
               broadcaster: events.Broadcaster,
               geometry_params: params.GeometryParams,
               frame_rate: float | None = None,
               black_point: float = 0,
               reference_disk: ellipse_fitting.Ellipse | None = None,
               interrupted: threading.Event | None = None):
    self.broadcaster = broadcaster
    self.params = geometry_params
    self.frame_rate = frame_rate
    self.black_point = black_point
    self.reference_disk = reference_disk
    self.interrupted = interrupted

  def _xy_ratio(self, ellipse: ellipse_fitting.Ellipse) -> float:
    if self.params.xy_ratio is not None:
      ratio = self.params.xy_ratio
      logger.info('Overriding X/Y ratio to %.2f', ratio)
      return ratio

    ratio = ellipse.xy_ratio()
    if ratio < constants.UNDERSAMPLING_RATIO and self.frame_rate:
      exposure_ms = 1000 / self.frame_rate
      self.broadcaster.broadcast(events.SuggestionEvent(
          f'Image is undersampled by a factor of {ratio:.2f}. Try to use '
          f'{exposure_ms * ratio:.2f} ms exposure at acquisition instead of '
          f'{exposure_ms:.2f} ms'
      ))
    return ratio

  def _transform_ellipse(self, ellipse: ellipse_fitting.Ellipse,
                         transform: ShearAndScale
                         ) -> ellipse_fitting.Ellipse | None:
    points = [transform.apply(x, y) for x, y in
              ellipse.sample(constants.CORRECTED_ELLIPSE_SAMPLES)]
    try:
      return ellipse_fitting.fit_ellipse(points)
    except errors.RegressionError as e:
      logger.warning('Unable to compute the corrected ellipse: %s', e)
      return None

  def _autocrop(self,
                image: image_buffer.ImageBuffer,
                ellipse: ellipse_fitting.Ellipse,
                disk: ellipse_fitting.Ellipse,
                source_width: int
                ) -> tuple[image_buffer.ImageBuffer, ellipse_fitting.Ellipse]:
    mode = self.params.autocrop
    if mode == params.AutocropMode.OFF:
      return image, ellipse

    if mode == params.AutocropMode.SOURCE_WIDTH:
      side = source_width
      x0 = round(disk.center[0] - side / 2)
      y0 = round(disk.center[1] - side / 2)
      if (x0 < 0 or y0 < 0 or x0 + side > image.width or
          y0 + side > image.height):
        self.broadcaster.broadcast(events.WarningEvent(
            f'Cannot crop to the source width ({side:d} pixels) because the '
            'disk is too close to the border of the image. Skipping autocrop.'
        ))
        return image, ellipse
    else:
      factor = params.AUTOCROP_RADIUS_FACTORS[mode]
      side = 2 * int(np.ceil(factor * disk.radius()))

    cropped, (x0, y0) = crop_to_square(image.data, disk.center, side)

    def translate(x, y):
      return x - x0, y - y0

    ellipse = ellipse.translate(-x0, -y0)
    metadata = _remap_redshift_areas(image.metadata, translate)
    metadata = metadata.with_value(image_buffer.MetadataKey.ELLIPSE, ellipse)
    metadata = metadata.with_history(f'Autocrop ({mode.value})')
    return image_buffer.ImageBuffer(cropped, metadata), ellipse

  def correct(self,
              image: image_buffer.ImageBuffer,
              ellipse: ellipse_fitting.Ellipse,
              tilt: float) -> GeometryResult:
    """Corrects the geometry of image.

    Args:
      image: buffer to correct. It is not modified.
      ellipse: disk fitted on image.
      tilt: tilt angle to correct, in radians.
    """
    self.broadcaster.broadcast(events.ProgressEvent(0, _TASK))
    shear = float(np.tan(-tilt))
    sheared, offset = shear_image(image.data, shear, self.interrupted)
    tasks.raise_if_interrupted(self.interrupted)

    ratio = self._xy_ratio(ellipse)
    sx, sy = compute_scale(ratio, self.params.disallow_downsampling)
    corrected = rescale(sheared, sx, sy, self.black_point)
    transform = ShearAndScale(shear=shear, offset=offset, sx=sx, sy=sy)
    logger.info('Corrected geometry with shear %.4f and scale (%.3f, %.3f)',
                shear, sx, sy)

    corrected_ellipse = self._transform_ellipse(ellipse, transform)
    if corrected_ellipse is None:
      corrected_ellipse = ellipse

    metadata = _remap_redshift_areas(image.metadata, transform.apply)
    metadata = metadata.with_value(
        image_buffer.MetadataKey.ELLIPSE, corrected_ellipse)
    metadata = metadata.with_history(
        f'Geometry correction (tilt {np.rad2deg(tilt):.2f}°, '
        f'x/y ratio {ratio:.3f})')
    result = image_buffer.ImageBuffer(corrected, metadata)

    disk = self.reference_disk or corrected_ellipse
    result, final_ellipse = self._autocrop(
        result, corrected_ellipse, disk, image.width)
    self.broadcaster.broadcast(events.ProgressEvent(1, _TASK))
    return GeometryResult(corrected=result, ellipse=final_ellipse, disk=disk)
