"""Images derived from one or more geometry corrected disks."""
import logging

import numpy as np
import numpy.typing as npt

import constants
import drawing
import ellipse_fitting
import errors
import filtering
import image_buffer
import spectral_rays
import stretching

logger = logging.getLogger(__name__)


def coronagraph(image: image_buffer.ImageBuffer,
                ellipse: ellipse_fitting.Ellipse,
                black_point: float) -> image_buffer.ImageBuffer:
  """Hides the disk to reveal protuberances.

  Pixels within the ellipse are set to 0 and the black point is subtracted
  from the remaining ones. The exterior is then denoised with a radial
  Gaussian filter centered on the disk.
  """
  data = np.array(image.data, dtype=np.float32)
  data[drawing.disk_mask(data.shape, ellipse)] = 0
  data = np.clip(data - black_point, 0, None)
  filtered = filtering.radial_gaussian_filter(
      data, ellipse.center,
      constants.CORONAGRAPH_SIGMA_R, constants.CORONAGRAPH_SIGMA_THETA)
  return image.with_data(
      np.clip(filtered, 0, constants.MAX_PIXEL_VALUE))


def prefilter(data: npt.NDArray,
              ellipse: ellipse_fitting.Ellipse) -> npt.NDArray:
  return filtering.attenuate_far_from_limb(data, ellipse)


def coronagraph_mix(corrected: image_buffer.ImageBuffer,
                    corona: image_buffer.ImageBuffer,
                    ellipse: ellipse_fitting.Ellipse
                    ) -> image_buffer.ImageBuffer:
  """Combines the disk of corrected with the exterior of corona.

  The disk is taken from a linearly stretched copy of corrected, the
  exterior from the prefiltered coronagraph.
  """
  if corrected.data.shape != corona.data.shape:
    raise errors.InvalidArgument(
        f'Cannot mix images of shapes {corrected.data.shape} and '
        f'{corona.data.shape}')
  disk = stretching.LinearStrategy().stretched(corrected).data
  exterior = prefilter(corona.data, ellipse)
  mix = np.where(drawing.disk_mask(disk.shape, ellipse), disk, exterior)
  return corrected.with_data(mix)


def doppler_rgb(shift_minus: image_buffer.ImageBuffer,
                shift_plus: image_buffer.ImageBuffer
                ) -> image_buffer.RgbImage:
  """Composes the images of two opposite pixel shifts.

  Red is the negative shift, blue the positive shift and green their
  average.
  """
  if shift_minus.data.shape != shift_plus.data.shape:
    raise errors.InvalidArgument(
        'Doppler images must have the same dimensions, but got '
        f'{shift_minus.width:d}x{shift_minus.height:d} and '
        f'{shift_plus.width:d}x{shift_plus.height:d}')
  r = shift_minus.data
  b = shift_plus.data
  return image_buffer.RgbImage(r=r, g=(r + b) / 2, b=b)


def colorize(curve: spectral_rays.ColorCurve,
             mono: npt.NDArray) -> image_buffer.RgbImage:
  stretched = np.array(mono, dtype=np.float32)
  stretching.LinearStrategy().stretch_data(stretched)
  r, g, b = curve.to_rgb(stretched)
  return image_buffer.RgbImage(r, g, b)


def edge_detection_image(image_shape: tuple[int, int],
                         fit: ellipse_fitting.EllipseFit
                         ) -> image_buffer.ImageBuffer:
  return image_buffer.ImageBuffer(
      drawing.draw_edge_detection(image_shape, fit.ellipse, fit.samples))
