import numpy as np
import numpy.typing as npt
from scipy import interpolate
from scipy import ndimage
from skimage import transform

import constants
import drawing
import ellipse_fitting


def radial_gaussian_filter(image: npt.NDArray,
                           center: tuple[float, float],
                           sigma_r: float,
                           sigma_theta: float) -> npt.NDArray:
  """Applies a radial Gaussian filter to the image.

  The image is resampled on a polar grid around the center, filtered there,
  then resampled back to the Euclidean grid.

  Args:
    image: image to be filtered, of shape (height, width).
    center: (x, y) center of the radial Gaussian filter.
    sigma_r: Gaussian filter standard deviation in the radial direction.
    sigma_theta: Gaussian filter standard deviation in the tangential
      direction.
  """
  # Pixel coordinates for Euclidean grid.
  y = np.arange(image.shape[0]) - center[1]
  x = np.arange(image.shape[1]) - center[0]
  y0, x0 = np.meshgrid(y, x, indexing='ij')
  r0 = np.sqrt(x0**2 + y0**2)
  theta0 = np.arctan2(y0, x0)

  # Pixel coordinates for polar grid.
  dtheta = 0.6 / max(float(np.max(r0)), 1)
  theta = np.linspace(-np.pi, np.pi, max(int(2 * np.pi / dtheta), 2))
  r = np.arange(int(np.ceil(np.max(r0))) + 1)
  r1, theta1 = np.meshgrid(r, theta, indexing='ij')
  x1 = r1 * np.cos(theta1)
  y1 = r1 * np.sin(theta1)

  # Transform image to polar grid.
  image_polar = interpolate.interpn(
      (y, x),
      image,
      np.stack((y1, x1), axis=2),
      method='linear',
      bounds_error=False,
      fill_value=0,
  )

  # Filter in polar coordinates. The angle wraps around.
  filtered_polar = ndimage.gaussian_filter(
      image_polar, (sigma_r, sigma_theta), mode=('nearest', 'wrap'))

  # Transform back to the Euclidean grid.
  return interpolate.interpn(
      (r, theta),
      filtered_polar,
      np.stack((r0, theta0), axis=2),
      method='linear'
  )


def exterior_mask(image_shape: tuple[int, int],
                  ellipse: ellipse_fitting.Ellipse) -> npt.NDArray:
  """Returns a smooth mask, close to 1 outside of the disk and 0 inside.

  The binary mask is downsampled, blurred and upsampled back, which gives a
  soft transition over a few percent of the image size around the limb.
  """
  mask = np.logical_not(drawing.disk_mask(image_shape, ellipse)).astype(float)
  small_shape = (max(1, image_shape[0] // constants.MASK_DOWNSAMPLING),
                 max(1, image_shape[1] // constants.MASK_DOWNSAMPLING))
  small = transform.resize(mask, small_shape, order=1, anti_aliasing=True)
  small = ndimage.gaussian_filter(small, constants.MASK_BLUR_SIGMA)
  return np.clip(transform.resize(small, image_shape, order=1), 0, 1)


def attenuate_far_from_limb(data: npt.NDArray,
                            ellipse: ellipse_fitting.Ellipse) -> npt.NDArray:
  """Reduces pixel values outside of the disk, the more the farther.

  Far from the limb, signal is more likely to be an artifact than a
  protuberance. Pixels outside the ellipse are divided by
  log2(0.99 + dist / radius)^10, where dist is the distance to the center.
  """
  filtered = np.array(data, dtype=np.float32)
  outside = np.logical_not(drawing.disk_mask(data.shape, ellipse))
  dist = drawing.distance_to(data.shape, ellipse.center)
  # With the smallest semi-axis, dist / radius >= 1 for all outside pixels.
  radius = min(ellipse.semi_axes)
  scale = np.log2(0.99 + dist[outside] / radius)**(
      constants.CORONAGRAPH_ATTENUATION_POWER)
  filtered[outside] /= scale.astype(np.float32)
  return filtered
