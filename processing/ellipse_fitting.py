import dataclasses
import logging

import numpy as np
import numpy.typing as npt
from scipy import ndimage

import constants
import errors

logger = logging.getLogger(__name__)

# Relative tolerance for rank and discriminant checks.
_EPS = 1e-10


@dataclasses.dataclass(frozen=True)
class Ellipse:
  """Ellipse in pixel coordinates.

  Attributes:
    center: (x, y) center of the ellipse.
    semi_axes: (a, b) semi-axes. Semi-axis a is along the rotation angle.
    rotation: angle of semi-axis a with respect to the x axis, in radians.
  """
  center: tuple[float, float]
  semi_axes: tuple[float, float]
  rotation: float = 0

  def __post_init__(self):
    if not (self.semi_axes[0] > 0 and self.semi_axes[1] > 0):
      raise errors.InvalidArgument(
          f'Semi-axes must be positive, but got {self.semi_axes}')

  def conic(self) -> tuple[float, float, float, float, float, float]:
    """Returns (A, B, C, D, E, F) of A x^2 + B xy + C y^2 + D x + E y + F = 0."""
    a, b = self.semi_axes
    x0, y0 = self.center
    c = np.cos(self.rotation)
    s = np.sin(self.rotation)
    A = a**2 * s**2 + b**2 * c**2
    B = 2 * (b**2 - a**2) * s * c
    C = a**2 * c**2 + b**2 * s**2
    D = -2 * A * x0 - B * y0
    E = -B * x0 - 2 * C * y0
    F = A * x0**2 + B * x0 * y0 + C * y0**2 - a**2 * b**2
    return A, B, C, D, E, F

  def is_within(self, x, y):
    """Works on scalars as well as numpy arrays of coordinates."""
    a, b = self.semi_axes
    dx = np.asarray(x, dtype=float) - self.center[0]
    dy = np.asarray(y, dtype=float) - self.center[1]
    c = np.cos(self.rotation)
    s = np.sin(self.rotation)
    u = dx * c + dy * s
    v = -dx * s + dy * c
    return (u / a)**2 + (v / b)**2 <= 1

  def is_almost_circle(self, epsilon: float) -> bool:
    a, b = self.semi_axes
    return abs(a - b) / max(a, b) <= epsilon

  def to_cartesian(self, theta: float) -> tuple[float, float]:
    a, b = self.semi_axes
    c = np.cos(self.rotation)
    s = np.sin(self.rotation)
    u = a * np.cos(theta)
    v = b * np.sin(theta)
    return (float(self.center[0] + u * c - v * s),
            float(self.center[1] + u * s + v * c))

  def sample(self, num_points: int) -> npt.NDArray:
    """Returns num_points boundary points at regular parametric angles."""
    theta = np.linspace(0, 2 * np.pi, num_points, endpoint=False)
    return np.asarray([self.to_cartesian(t) for t in theta])

  def tilt_angle(self) -> float:
    """Returns the tilt angle of the scan, in radians.

    A circle scanned with a tilted slit is sheared horizontally, row by row.
    The tilt is the angle theta such that shifting each row y by
    y * tan(-theta) removes the cross term of the conic.
    """
    A, B, _, _, _, _ = self.conic()
    return float(np.arctan(-B / (2 * A)))

  def xy_ratio(self) -> float:
    """Returns the horizontal over vertical extent of the de-sheared ellipse.

    Values below 1 mean that the scan direction is undersampled.
    """
    A, B, C, _, _, _ = self.conic()
    return float(np.sqrt(4 * A * C - B**2) / (2 * A))

  def radius(self) -> float:
    return 0.5 * (self.semi_axes[0] + self.semi_axes[1])

  def translate(self, dx: float, dy: float) -> 'Ellipse':
    return dataclasses.replace(
        self, center=(self.center[0] + dx, self.center[1] + dy))


@dataclasses.dataclass(frozen=True)
class EllipseFit:
  ellipse: Ellipse
  samples: npt.NDArray


def _ellipse_from_conic(coefficients: npt.NDArray) -> Ellipse:
  A, B, C, D, E, F = coefficients
  discriminant = B**2 - 4 * A * C
  if discriminant >= -_EPS * (A**2 + C**2):
    raise errors.RegressionError(
        f'Fitted conic is not an ellipse (discriminant {discriminant:e})')

  x0, y0 = np.linalg.solve([[2 * A, B], [B, 2 * C]], [-D, -E])
  f_center = A * x0**2 + B * x0 * y0 + C * y0**2 + D * x0 + E * y0 + F

  eigenvalues, eigenvectors = np.linalg.eigh([[A, B / 2], [B / 2, C]])
  squared_axes = -f_center / eigenvalues
  if np.any(squared_axes <= 0) or not np.all(np.isfinite(squared_axes)):
    raise errors.RegressionError('Fitted conic is an imaginary ellipse.')

  # The smallest eigenvalue corresponds to the major axis.
  major = eigenvectors[:, 0]
  rotation = np.arctan2(major[1], major[0])
  if rotation > np.pi / 2:
    rotation -= np.pi
  elif rotation <= -np.pi / 2:
    rotation += np.pi
  return Ellipse(
      center=(float(x0), float(y0)),
      semi_axes=(float(np.sqrt(squared_axes[0])),
                 float(np.sqrt(squared_axes[1]))),
      rotation=float(rotation),
  )


def fit_ellipse(points: npt.ArrayLike) -> Ellipse:
  """Fits an ellipse to points with a least-squares conic regression.

  The conic minimizing the algebraic distance to the points is the right
  singular vector of the design matrix with the smallest singular value.
  Coordinates are normalized first to keep the design matrix well
  conditioned. Three or four points do not determine a general conic, so in
  that case the conic is constrained to a circle.

  Args:
    points: array of shape (N, 2) of (x, y) coordinates.

  Raises:
    RegressionError: if the points are too few, degenerate (collinear,
      repeated) or if the best fitting conic is not an ellipse.
  """
  points = np.asarray(points, dtype=float).reshape(-1, 2)
  if points.shape[0] < 3:
    raise errors.RegressionError(
        f'At least 3 points are required, but got {points.shape[0]:d}')
  if not np.all(np.isfinite(points)):
    raise errors.RegressionError('Points must have finite coordinates.')

  mean = np.mean(points, axis=0)
  scale = np.sqrt(np.mean(np.sum((points - mean)**2, axis=1)) / 2)
  if scale == 0:
    raise errors.RegressionError('All points are identical.')
  x = (points[:, 0] - mean[0]) / scale
  y = (points[:, 1] - mean[1]) / scale

  ones = np.ones(x.shape)
  if points.shape[0] < 5:
    design = np.stack((x**2 + y**2, x, y, ones), axis=1)
  else:
    design = np.stack((x**2, x * y, y**2, x, y, ones), axis=1)

  _, singular_values, vt = np.linalg.svd(design, full_matrices=True)
  num_unknowns = design.shape[1]
  if singular_values[num_unknowns - 2] <= _EPS * singular_values[0]:
    raise errors.RegressionError(
        'Points are degenerate, the conic is not uniquely determined.')
  solution = vt[-1]

  if points.shape[0] < 5:
    coefficients = np.asarray(
        [solution[0], 0, solution[0], solution[1], solution[2], solution[3]])
  else:
    coefficients = solution

  normalized = _ellipse_from_conic(coefficients)
  return Ellipse(
      center=(normalized.center[0] * scale + mean[0],
              normalized.center[1] * scale + mean[1]),
      semi_axes=(normalized.semi_axes[0] * scale,
                 normalized.semi_axes[1] * scale),
      rotation=normalized.rotation,
  )


def _refine_peaks(profiles: npt.NDArray, peaks: npt.NDArray) -> npt.NDArray:
  """Sub-pixel positions of peaks, by parabolic interpolation.

  Args:
    profiles: array of shape (rows, width).
    peaks: index of the peak on each row.
  """
  rows = np.arange(profiles.shape[0])
  center = np.clip(peaks, 1, profiles.shape[1] - 2)
  y0 = profiles[rows, center - 1]
  y1 = profiles[rows, center]
  y2 = profiles[rows, center + 1]
  denominator = y0 - 2 * y1 + y2
  safe = np.where(denominator < 0, denominator, -1)
  offset = np.where(denominator < 0, 0.5 * (y0 - y2) / safe, 0)
  return center + np.clip(offset, -0.5, 0.5)


def find_limb_samples(data: npt.NDArray, sensitivity: float) -> npt.NDArray:
  """Detects the left and right limb of the disk on each row.

  Rows are smoothed and differentiated independently, so that the disk does
  not leak into the rows above and below it. Rows are accepted when both the
  rising and the falling edge are stronger than sensitivity times the median
  gradient magnitude of the image, and than half the strongest edge. Weaker
  edges come from chords too short to locate the limb.

  Returns:
    array of shape (N, 2) of (x, y) limb coordinates, with sub-pixel x.
  """
  if data.shape[1] < 3:
    return np.zeros((0, 2))
  smoothed = ndimage.gaussian_filter1d(
      np.asarray(data, dtype=float), constants.LIMB_SMOOTHING_SIGMA, axis=1)
  gradient = np.gradient(smoothed, axis=1)
  threshold = max(sensitivity * float(np.median(np.abs(gradient))),
                  constants.LIMB_MIN_GRADIENT_RATIO *
                  float(np.max(np.abs(gradient))))

  rows = np.arange(gradient.shape[0])
  left = np.argmax(gradient, axis=1)
  right = np.argmin(gradient, axis=1)
  strength = np.minimum(gradient[rows, left], -gradient[rows, right])
  valid = np.logical_and(strength > threshold, left < right)
  if np.any(valid):
    valid &= strength >= (constants.LIMB_EDGE_RATIO *
                          float(np.max(strength[valid])))

  left_x = _refine_peaks(gradient, left)
  right_x = _refine_peaks(-gradient, right)
  return np.concatenate((
      np.stack((left_x[valid], rows[valid]), axis=1),
      np.stack((right_x[valid], rows[valid]), axis=1),
  )).astype(float)


def fit_limb(data: npt.NDArray, sensitivity: float) -> EllipseFit:
  samples = find_limb_samples(data, sensitivity)
  logger.debug('Detected %d limb samples', samples.shape[0])
  return EllipseFit(ellipse=fit_ellipse(samples), samples=samples)
