import numpy as np
import numpy.typing as npt

import constants
import ellipse_fitting


def pixel_grid(image_shape: tuple[int, int]
               ) -> tuple[npt.NDArray, npt.NDArray]:
  """Returns (x, y) pixel coordinates for an image of shape (height, width)."""
  y = np.arange(image_shape[0])
  x = np.arange(image_shape[1])
  y, x = np.meshgrid(y, x, indexing='ij')
  return x, y


def disk_mask(image_shape: tuple[int, int],
              ellipse: ellipse_fitting.Ellipse) -> npt.NDArray:
  """Boolean mask which is True for pixels within the ellipse."""
  x, y = pixel_grid(image_shape)
  return ellipse.is_within(x, y)


def distance_to(image_shape: tuple[int, int],
                center: tuple[float, float]) -> npt.NDArray:
  x, y = pixel_grid(image_shape)
  return np.sqrt((x - center[0])**2 + (y - center[1])**2)


def draw_edge_detection(image_shape: tuple[int, int],
                        ellipse: ellipse_fitting.Ellipse,
                        samples: npt.NDArray) -> npt.NDArray:
  """Draws the fitted ellipse and the limb samples it was fitted on.

  The ellipse is filled with a quarter of the maximum pixel value, and
  samples are drawn at the maximum pixel value.
  """
  image = np.zeros(image_shape, dtype=np.float32)
  image[disk_mask(image_shape, ellipse)] = constants.MAX_PIXEL_VALUE // 4

  samples = np.rint(np.asarray(samples, dtype=float).reshape(-1, 2))
  x = samples[:, 0].astype(int)
  y = samples[:, 1].astype(int)
  inside = np.logical_and.reduce((
      x >= 0, x < image_shape[1], y >= 0, y < image_shape[0]))
  image[y[inside], x[inside]] = constants.MAX_PIXEL_VALUE
  return image
