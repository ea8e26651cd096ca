import threading
import unittest

import numpy as np

import banding
import ellipse_fitting
import errors
import events
import image_buffer
import params


def banded_disk(shape=(100, 100), center=(50, 50), radius=35):
  y, x = np.mgrid[:shape[0], :shape[1]]
  ellipse = ellipse_fitting.Ellipse(center, (radius, radius))
  inside = ellipse.is_within(x, y)
  rows = np.where(np.arange(shape[0]) % 2 == 0, 1.1, 0.9)[:, np.newaxis]
  data = np.where(inside, 10000 * rows, 300).astype(np.float32)
  return data, ellipse, inside


def disk_row_means(data, inside):
  rows = np.any(inside, axis=1)
  sums = np.sum(np.where(inside, data, 0), axis=1)
  return sums[rows] / np.count_nonzero(inside, axis=1)[rows]


class TestReduceBanding(unittest.TestCase):

  def test_reduces_row_to_row_variations(self):
    data, ellipse, inside = banded_disk()
    before = np.std(disk_row_means(data, inside))
    banding.reduce_banding(data, ellipse, 24)
    after = np.std(disk_row_means(data, inside))
    self.assertLess(after, 0.2 * before)

  def test_pixels_outside_of_the_disk_are_untouched(self):
    data, ellipse, inside = banded_disk()
    original = np.copy(data)
    banding.reduce_banding(data, ellipse, 24)
    np.testing.assert_array_equal(data[~inside], original[~inside])

  def test_rows_without_disk_are_untouched(self):
    data, ellipse, _ = banded_disk(center=(50, 80), radius=15)
    original = np.copy(data)
    banding.reduce_banding(data, ellipse, 8)
    np.testing.assert_array_equal(data[:60], original[:60])

  def test_invalid_band_width(self):
    data, ellipse, _ = banded_disk()
    with self.assertRaises(errors.InvalidParameter):
      banding.reduce_banding(data, ellipse, 0)


class TestBandingCorrector(unittest.TestCase):

  def test_no_pass_leaves_buffer_identical(self):
    data, ellipse, _ = banded_disk()
    image = image_buffer.ImageBuffer(data)
    original = np.copy(image.data)
    corrector = banding.BandingCorrector(
        events.Broadcaster(), params.BandingParams(passes=0))
    corrector.correct(image, ellipse)
    self.assertEqual(image.data.tobytes(), original.tobytes())

  def test_progress_per_pass(self):
    data, ellipse, _ = banded_disk()
    broadcaster = events.CollectingBroadcaster()
    corrector = banding.BandingCorrector(
        broadcaster, params.BandingParams(width=16, passes=4))
    corrector.correct(image_buffer.ImageBuffer(data), ellipse)
    progress = [event.progress for event in
                broadcaster.events(events.ProgressEvent)]
    self.assertEqual(progress, [0, 0.25, 0.5, 0.75, 1])

  def test_corrects_in_place(self):
    data, ellipse, _ = banded_disk()
    image = image_buffer.ImageBuffer(data)
    corrector = banding.BandingCorrector(
        events.Broadcaster(), params.BandingParams())
    self.assertIs(corrector.correct(image, ellipse), image)
    self.assertFalse(np.array_equal(image.data, banded_disk()[0]))

  def test_interruption(self):
    data, ellipse, _ = banded_disk()
    interrupted = threading.Event()
    interrupted.set()
    corrector = banding.BandingCorrector(
        events.Broadcaster(), params.BandingParams(), interrupted)
    with self.assertRaises(errors.ProcessingInterrupted):
      corrector.correct(image_buffer.ImageBuffer(data), ellipse)

  def test_invalid_params(self):
    with self.assertRaises(errors.InvalidParameter):
      params.BandingParams(width=0)
    with self.assertRaises(errors.InvalidParameter):
      params.BandingParams(passes=-1)


if __name__ == '__main__':
  unittest.main()
