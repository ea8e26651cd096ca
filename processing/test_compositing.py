import unittest
import warnings

import numpy as np

import compositing
import constants
import ellipse_fitting
import errors
import image_buffer
import spectral_rays

MAX = constants.MAX_PIXEL_VALUE


def disk(shape=(100, 100), center=(50, 50), radius=30, value=20000,
         background=800):
  y, x = np.mgrid[:shape[0], :shape[1]]
  ellipse = ellipse_fitting.Ellipse(center, (radius, radius))
  data = np.where(ellipse.is_within(x, y), value, background)
  return image_buffer.ImageBuffer(data), ellipse


class TestDoppler(unittest.TestCase):

  def test_channels(self):
    minus = image_buffer.ImageBuffer(np.full((4, 6), 100))
    plus = image_buffer.ImageBuffer(np.full((4, 6), 300))
    rgb = compositing.doppler_rgb(minus, plus)
    np.testing.assert_array_equal(rgb.r, 100)
    np.testing.assert_array_equal(rgb.g, 200)
    np.testing.assert_array_equal(rgb.b, 300)
    self.assertEqual(rgb.to_array().shape, (4, 6, 3))

  def test_mismatched_dimensions(self):
    minus = image_buffer.ImageBuffer(np.zeros((4, 6)))
    plus = image_buffer.ImageBuffer(np.zeros((6, 4)))
    with self.assertRaises(errors.InvalidArgument):
      compositing.doppler_rgb(minus, plus)


class TestColorize(unittest.TestCase):

  def test_h_alpha_is_red(self):
    mono = np.linspace(0, 30000, 100, dtype=np.float32).reshape(10, 10)
    curve = spectral_rays.color_curve(spectral_rays.SpectralRay.H_ALPHA)
    rgb = compositing.colorize(curve, mono)
    self.assertGreater(float(rgb.r[5, 0]), float(rgb.b[5, 0]))
    self.assertAlmostEqual(float(rgb.r[-1, -1]), MAX, delta=1)
    self.assertAlmostEqual(float(rgb.g[0, 0]), 0, delta=0.01)
    for channel in rgb.channels():
      self.assertGreaterEqual(float(np.min(channel)), 0)
      self.assertLessEqual(float(np.max(channel)), MAX)

  def test_black_and_white_are_kept_for_every_ray(self):
    mono = np.array([[0, MAX]], dtype=np.float32)
    for ray, curve in spectral_rays.COLOR_CURVES.items():
      with self.subTest(ray=ray):
        r, g, b = curve.to_rgb(mono)
        for channel in (r, g, b):
          self.assertAlmostEqual(float(channel[0, 0]), 0, delta=1)
          self.assertAlmostEqual(float(channel[0, 1]), MAX, delta=1)

  def test_curve_point_on_black_point_is_identity(self):
    mono = np.linspace(0, MAX, 16, dtype=np.float32).reshape(4, 4)
    curve = spectral_rays.color_curve(spectral_rays.SpectralRay.CALCIUM_K)
    with warnings.catch_warnings():
      warnings.simplefilter('error')
      r, _, _ = curve.to_rgb(mono)
    np.testing.assert_allclose(r, mono, atol=1)

  def test_source_is_not_modified(self):
    mono = np.full((3, 3), 7, dtype=np.float32)
    curve = spectral_rays.color_curve(spectral_rays.SpectralRay.CALCIUM_K)
    compositing.colorize(curve, mono)
    np.testing.assert_array_equal(mono, 7)

  def test_other_ray_has_no_curve(self):
    self.assertIsNone(
        spectral_rays.color_curve(spectral_rays.SpectralRay.OTHER))


class TestCoronagraph(unittest.TestCase):

  def test_disk_is_hidden(self):
    image, ellipse = disk()
    corona = compositing.coronagraph(image, ellipse, black_point=500)
    self.assertAlmostEqual(float(corona.data[50, 50]), 0, places=3)
    self.assertGreaterEqual(float(np.min(corona.data)), 0)
    # Exterior keeps the background above the black point.
    self.assertAlmostEqual(float(corona.data[5, 5]), 300, delta=5)
    self.assertEqual(corona.data.shape, image.data.shape)

  def test_prefilter_attenuates_far_pixels(self):
    image, ellipse = disk()
    filtered = compositing.prefilter(image.data, ellipse)
    np.testing.assert_array_equal(filtered[50, 50], image.data[50, 50])
    self.assertLess(float(filtered[2, 2]), float(image.data[2, 2]))
    self.assertLess(float(filtered[2, 2]), float(filtered[50, 15]))

  def test_mix_combines_disk_and_corona(self):
    image, ellipse = disk()
    corona = compositing.coronagraph(image, ellipse, black_point=500)
    mix = compositing.coronagraph_mix(image, corona, ellipse)
    self.assertAlmostEqual(float(mix.data[50, 50]), MAX, delta=0.01)
    self.assertLess(float(mix.data[5, 5]), 300)

  def test_mix_requires_same_dimensions(self):
    image, ellipse = disk()
    other = image_buffer.ImageBuffer(np.zeros((10, 10)))
    with self.assertRaises(errors.InvalidArgument):
      compositing.coronagraph_mix(image, other, ellipse)


class TestEdgeDetectionImage(unittest.TestCase):

  def test_draws_ellipse_and_samples(self):
    ellipse = ellipse_fitting.Ellipse((20, 15), (8, 8))
    samples = np.array([[12.2, 15], [28, 14.8], [100, 100]])
    fit = ellipse_fitting.EllipseFit(ellipse, samples)
    image = compositing.edge_detection_image((30, 40), fit)
    self.assertEqual(image.data.shape, (30, 40))
    self.assertEqual(float(image.data[15, 20]), MAX // 4)
    self.assertEqual(float(image.data[15, 12]), MAX)
    self.assertEqual(float(image.data[15, 28]), MAX)
    self.assertEqual(float(image.data[0, 0]), 0)


if __name__ == '__main__':
  unittest.main()
