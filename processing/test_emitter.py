import os
import tempfile
import unittest

import numpy as np

import constants
import emitter
import image_buffer
import params
import stretching

Kind = emitter.GeneratedImageKind


class TestCollectingImageEmitter(unittest.TestCase):

  def setUp(self):
    self.emitter = emitter.CollectingImageEmitter()
    self.image = image_buffer.ImageBuffer(np.array([[0, 10], [20, 40]]))

  def test_mono_image_is_stretched_copy(self):
    emitted = self.emitter.new_mono_image(
        Kind.PROCESSED, params.WorkflowStep.GEOMETRY_CORRECTION, 'Disk',
        'disk', self.image, stretching.LinearStrategy(), pixel_shift=2)
    np.testing.assert_array_equal(self.image.data, [[0, 10], [20, 40]])
    self.assertAlmostEqual(float(emitted.data[1, 1]),
                           constants.MAX_PIXEL_VALUE, delta=0.01)
    self.assertEqual(emitted.pixel_shift, 2)
    self.assertEqual(self.emitter.find('Disk', pixel_shift=2), emitted)
    self.assertIsNone(self.emitter.find('Disk', pixel_shift=0))

  def test_buffer_consumer_sees_copy(self):
    def clear(data):
      data[...] = 0
      data[0, 0] = 1

    emitted = self.emitter.new_mono_image(
        Kind.DEBUG, None, 'Debug', 'debug', self.image,
        stretching.LinearStrategy(), buffer_consumer=clear)
    self.assertEqual(float(self.image.data[1, 1]), 40)
    self.assertEqual(float(emitted.data[1, 1]), 0)

  def test_color_image(self):
    def gray(mono):
      return image_buffer.RgbImage(mono, mono, mono)

    emitted = self.emitter.new_color_image(
        Kind.PROCESSED, None, 'Gray', 'gray', self.image,
        stretching.LinearStrategy(), gray)
    self.assertTrue(emitted.is_color)
    self.assertEqual(emitted.data.shape, (2, 2, 3))

  def test_rgb_channels_are_stretched_independently(self):
    rgb = image_buffer.RgbImage(np.array([[0, 1]]), np.array([[0, 100]]),
                                np.array([[5, 5]]))
    emitted = self.emitter.new_rgb_image(
        Kind.PROCESSED, None, 'RGB', 'rgb', stretching.LinearStrategy(),
        lambda: rgb)
    np.testing.assert_allclose(emitted.data[0, 1, :2],
                               constants.MAX_PIXEL_VALUE, rtol=1e-6)
    np.testing.assert_array_equal(rgb.g, [[0, 100]])


class TestNoOpImageEmitter(unittest.TestCase):

  def test_nothing_is_computed(self):
    def fail():
      raise AssertionError('should not be called')

    no_op = emitter.NoOpImageEmitter()
    self.assertIsNone(no_op.new_rgb_image(
        Kind.PROCESSED, None, 'RGB', 'rgb', stretching.LinearStrategy(), fail))


class TestFileImageEmitter(unittest.TestCase):

  def test_writes_npz_and_png(self):
    image = image_buffer.ImageBuffer(np.arange(64).reshape(8, 8))
    with tempfile.TemporaryDirectory() as directory:
      file_emitter = emitter.FileImageEmitter(directory, 'scan')
      file_emitter.new_mono_image(
          Kind.RAW, params.WorkflowStep.RAW_IMAGE, 'Raw (Linear)', 'linear',
          image, stretching.LinearStrategy(), pixel_shift=-3)
      file_emitter.new_color_image(
          Kind.PROCESSED, None, 'Gray', 'gray', image,
          stretching.LinearStrategy(),
          lambda mono: image_buffer.RgbImage(mono, mono, mono))

      npz_path = os.path.join(directory, 'scan', 'raw', 'linear_shift-3.npz')
      with np.load(npz_path) as saved:
        self.assertEqual(saved['image'].shape, (8, 8))
        self.assertEqual(str(saved['title']), 'Raw (Linear)')
      self.assertTrue(os.path.exists(
          os.path.join(directory, 'scan', 'raw', 'linear_shift-3.png')))
      self.assertTrue(os.path.exists(
          os.path.join(directory, 'scan', 'processed', 'gray.png')))


if __name__ == '__main__':
  unittest.main()
