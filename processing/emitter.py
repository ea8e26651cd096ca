"""Receivers of the images produced by the processing workflow.

Emitters get buffers shared with other stages, so they always stretch a
private copy before passing the result on.
"""
from collections.abc import Callable
import dataclasses
import enum
import logging
import threading

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt

import constants
import filepaths
import image_buffer
import params
import stretching

logger = logging.getLogger(__name__)


class GeneratedImageKind(enum.Enum):
  RAW = 'raw'
  DEBUG = 'debug'
  PROCESSED = 'processed'
  IMAGE_MATH = 'script'


@dataclasses.dataclass(frozen=True)
class EmittedImage:
  """A stretched output image.

  Attributes:
    data: array of shape (height, width) for mono images, or
      (height, width, 3) for color images, with values in
      [0, MAX_PIXEL_VALUE].
  """
  kind: GeneratedImageKind
  step: params.WorkflowStep | None
  title: str
  name: str
  pixel_shift: float
  data: npt.NDArray

  @property
  def is_color(self) -> bool:
    return self.data.ndim == 3


class ImageEmitter:
  def _emit(self, image: EmittedImage):
    raise NotImplementedError

  def new_mono_image(
      self,
      kind: GeneratedImageKind,
      step: params.WorkflowStep | None,
      title: str,
      name: str,
      image: image_buffer.ImageBuffer,
      strategy: stretching.StretchingStrategy,
      buffer_consumer: Callable[[npt.NDArray], None] | None = None,
      pixel_shift: float = 0,
  ) -> EmittedImage:
    """Emits a stretched copy of image.

    Args:
      buffer_consumer: if set, called on the copy before it is stretched.
        It may modify the copy in place.
    """
    copy = image.copy()
    if buffer_consumer is not None:
      buffer_consumer(copy.data)
    strategy.stretch(copy)
    emitted = EmittedImage(kind, step, title, name, pixel_shift, copy.data)
    self._emit(emitted)
    return emitted

  def new_color_image(
      self,
      kind: GeneratedImageKind,
      step: params.WorkflowStep | None,
      title: str,
      name: str,
      image: image_buffer.ImageBuffer,
      strategy: stretching.StretchingStrategy,
      colorizer: Callable[[npt.NDArray], image_buffer.RgbImage],
      pixel_shift: float = 0,
  ) -> EmittedImage:
    """Emits the colorization of a stretched copy of image."""
    copy = strategy.stretched(image)
    rgb = colorizer(copy.data)
    emitted = EmittedImage(
        kind, step, title, name, pixel_shift, rgb.to_array())
    self._emit(emitted)
    return emitted

  def new_rgb_image(
      self,
      kind: GeneratedImageKind,
      step: params.WorkflowStep | None,
      title: str,
      name: str,
      strategy: stretching.StretchingStrategy,
      rgb_supplier: Callable[[], image_buffer.RgbImage],
      pixel_shift: float = 0,
  ) -> EmittedImage:
    """Emits an RGB image, each of its channels stretched independently."""
    rgb = rgb_supplier()
    channels = []
    for channel in rgb.channels():
      channel = np.array(channel, dtype=np.float32)
      strategy.stretch_data(channel)
      channels.append(channel)
    emitted = EmittedImage(kind, step, title, name, pixel_shift,
                           np.stack(channels, axis=2))
    self._emit(emitted)
    return emitted


class NoOpImageEmitter(ImageEmitter):
  """Discards images without computing them."""

  def new_mono_image(self, *args, **kwargs):
    return None

  def new_color_image(self, *args, **kwargs):
    return None

  def new_rgb_image(self, *args, **kwargs):
    return None


class CollectingImageEmitter(ImageEmitter):
  """Keeps emitted images in memory. Safe to use from several threads."""

  def __init__(self):
    self._lock = threading.Lock()
    self._images = []

  def _emit(self, image: EmittedImage):
    with self._lock:
      self._images.append(image)

  def images(self) -> list[EmittedImage]:
    with self._lock:
      return list(self._images)

  def titles(self) -> list[str]:
    return [image.title for image in self.images()]

  def find(self, title: str,
           pixel_shift: float | None = None) -> EmittedImage | None:
    for image in self.images():
      if image.title == title and (pixel_shift is None or
                                   image.pixel_shift == pixel_shift):
        return image
    return None


class FileImageEmitter(ImageEmitter):
  """Saves images as .npz arrays and .png previews.

  Files are stored under output_dir/scan/kind.
  """

  def __init__(self, output_dir: str, scan: str):
    self.output_dir = output_dir
    self.scan = scan

  def _path(self, image: EmittedImage, extension: str) -> str:
    return filepaths.product(self.output_dir, self.scan, image.kind.value,
                             image.name, image.pixel_shift, extension)

  def _emit(self, image: EmittedImage):
    npz_path = self._path(image, 'npz')
    np.savez(npz_path, image=image.data, title=image.title)

    preview = np.clip(image.data / constants.MAX_PIXEL_VALUE, 0, 1)
    png_path = self._path(image, 'png')
    if image.is_color:
      plt.imsave(png_path, preview)
    else:
      plt.imsave(png_path, preview, cmap='gray', vmin=0, vmax=1)
    logger.info('Saved %s to %s', image.title, png_path)
