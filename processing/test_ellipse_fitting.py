import unittest

import numpy as np

import ellipse_fitting
import errors


def circle_points(center, radius, num_points=32):
  theta = np.linspace(0, 2 * np.pi, num_points, endpoint=False)
  return np.stack((center[0] + radius * np.cos(theta),
                   center[1] + radius * np.sin(theta)), axis=1)


def synthetic_disk(shape, center, radius, disk_value=30000, background=1000):
  y, x = np.mgrid[:shape[0], :shape[1]]
  inside = (x - center[0])**2 + (y - center[1])**2 <= radius**2
  return np.where(inside, disk_value, background).astype(np.float32)


class TestEllipse(unittest.TestCase):

  def test_circle_is_almost_circle_with_zero_tilt(self):
    circle = ellipse_fitting.Ellipse((10, 20), (5, 5))
    self.assertTrue(circle.is_almost_circle(0))
    self.assertAlmostEqual(circle.tilt_angle(), 0)
    self.assertAlmostEqual(circle.xy_ratio(), 1)

  def test_elongated_ellipse_is_not_almost_circle(self):
    ellipse = ellipse_fitting.Ellipse((0, 0), (30, 20))
    self.assertFalse(ellipse.is_almost_circle(0.001))
    self.assertTrue(ellipse.is_almost_circle(0.5))

  def test_non_positive_semi_axes_are_rejected(self):
    with self.assertRaises(errors.InvalidArgument):
      ellipse_fitting.Ellipse((0, 0), (0, 3))

  def test_is_within_accepts_arrays(self):
    ellipse = ellipse_fitting.Ellipse((0, 0), (2, 1))
    inside = ellipse.is_within(np.array([0, 1.9, 0, 2.1]),
                               np.array([0, 0, 1.1, 0]))
    np.testing.assert_array_equal(inside, [True, True, False, False])

  def test_xy_ratio_of_horizontally_compressed_circle(self):
    ellipse = ellipse_fitting.Ellipse((50, 50), (24, 30))
    self.assertAlmostEqual(ellipse.xy_ratio(), 0.8)

  def test_sample_points_are_on_the_boundary(self):
    ellipse = ellipse_fitting.Ellipse((5, -3), (7, 2), rotation=0.4)
    A, B, C, D, E, F = ellipse.conic()
    for x, y in ellipse.sample(12):
      value = A * x**2 + B * x * y + C * y**2 + D * x + E * y + F
      self.assertAlmostEqual(value / F, 0, places=9)

  def test_translate(self):
    ellipse = ellipse_fitting.Ellipse((5, 5), (3, 2), 0.1).translate(-5, 2)
    self.assertEqual(ellipse.center, (0, 7))
    self.assertEqual(ellipse.semi_axes, (3, 2))


class TestFitEllipse(unittest.TestCase):

  def test_four_points_fit_a_circle(self):
    points = [(90, 50), (50, 90), (10, 50), (50, 10)]
    ellipse = ellipse_fitting.fit_ellipse(points)
    np.testing.assert_allclose(ellipse.center, (50, 50), atol=1e-6)
    np.testing.assert_allclose(ellipse.semi_axes, (40, 40), atol=1e-6)
    self.assertTrue(ellipse.is_almost_circle(1e-9))

  def test_three_points_fit_the_circumscribed_circle(self):
    ellipse = ellipse_fitting.fit_ellipse([(1, 0), (0, 1), (-1, 0)])
    np.testing.assert_allclose(ellipse.center, (0, 0), atol=1e-9)
    np.testing.assert_allclose(ellipse.semi_axes, (1, 1), atol=1e-9)

  def test_recovers_rotated_ellipse(self):
    expected = ellipse_fitting.Ellipse((120, 80), (60, 35), rotation=0.3)
    ellipse = ellipse_fitting.fit_ellipse(expected.sample(40))
    np.testing.assert_allclose(ellipse.center, expected.center, atol=1e-6)
    np.testing.assert_allclose(ellipse.semi_axes, expected.semi_axes,
                               atol=1e-6)
    self.assertAlmostEqual(ellipse.rotation, expected.rotation, places=6)

  def test_sheared_circle_tilt_and_ratio(self):
    shear = np.tan(np.deg2rad(5))
    points = circle_points((100, 100), 50)
    points[:, 0] += shear * points[:, 1]
    ellipse = ellipse_fitting.fit_ellipse(points)
    self.assertAlmostEqual(ellipse.tilt_angle(), np.deg2rad(5), places=6)
    self.assertAlmostEqual(ellipse.xy_ratio(), 1, places=6)

  def test_too_few_points(self):
    with self.assertRaises(errors.RegressionError):
      ellipse_fitting.fit_ellipse([(0, 0), (1, 1)])

  def test_collinear_points(self):
    points = [(i, 2 * i + 1) for i in range(8)]
    with self.assertRaises(errors.RegressionError):
      ellipse_fitting.fit_ellipse(points)

  def test_identical_points(self):
    with self.assertRaises(errors.RegressionError):
      ellipse_fitting.fit_ellipse([(3, 3)] * 6)

  def test_hyperbola_is_rejected(self):
    t = np.linspace(-2, 2, 20)
    points = np.stack((np.cosh(t), np.sinh(t)), axis=1)
    with self.assertRaises(errors.RegressionError):
      ellipse_fitting.fit_ellipse(points)


class TestFitLimb(unittest.TestCase):

  def test_finds_synthetic_disk(self):
    data = synthetic_disk((100, 120), center=(60, 50), radius=40)
    fit = ellipse_fitting.fit_limb(data, sensitivity=10)
    self.assertGreater(fit.samples.shape[0], 50)
    np.testing.assert_allclose(fit.ellipse.center, (60, 50), atol=1.5)
    np.testing.assert_allclose(fit.ellipse.semi_axes, (40, 40), atol=2)

  def test_circle_keeps_its_aspect_ratio(self):
    data = synthetic_disk((120, 140), center=(70, 60), radius=40)
    fit = ellipse_fitting.fit_limb(data, sensitivity=10)
    self.assertAlmostEqual(fit.ellipse.xy_ratio(), 1, delta=0.005)
    np.testing.assert_allclose(fit.ellipse.center, (70, 60), atol=0.5)

  def test_noisy_circle_keeps_its_aspect_ratio(self):
    rng = np.random.default_rng(7)
    data = synthetic_disk((120, 140), center=(70, 60), radius=40,
                          disk_value=20000, background=1200)
    data = data + rng.normal(0, 300, data.shape)
    fit = ellipse_fitting.fit_limb(data, sensitivity=10)
    self.assertAlmostEqual(fit.ellipse.xy_ratio(), 1, delta=0.005)
    np.testing.assert_allclose(fit.ellipse.center, (70, 60), atol=0.5)

  def test_samples_stay_on_disk_rows(self):
    data = synthetic_disk((120, 140), center=(70, 60), radius=40)
    samples = ellipse_fitting.find_limb_samples(data, sensitivity=10)
    self.assertGreaterEqual(float(np.min(samples[:, 1])), 20)
    self.assertLessEqual(float(np.max(samples[:, 1])), 100)
    self.assertNotEqual(float(np.max(samples[:, 0] % 1)), 0)

  def test_empty_image_cannot_be_fitted(self):
    with self.assertRaises(errors.RegressionError):
      ellipse_fitting.fit_limb(np.zeros((50, 50)), sensitivity=10)


if __name__ == '__main__':
  unittest.main()
