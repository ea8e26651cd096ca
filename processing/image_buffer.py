from collections.abc import Callable
import dataclasses
import enum
from typing import Any

import numpy as np
import numpy.typing as npt


PointTransform = Callable[[float, float], tuple[float, float]]


class MetadataKey(enum.Enum):
  ELLIPSE = 'ellipse'
  REDSHIFT_AREAS = 'redshift_areas'
  TRANSFORMATION_HISTORY = 'transformation_history'
  PIXEL_SHIFT = 'pixel_shift'


@dataclasses.dataclass(frozen=True)
class RedshiftArea:
  """Area of the disk where a redshift was measured."""
  id: str
  pixel_shift: float
  km_per_s: float
  x1: float
  y1: float
  x2: float
  y2: float
  max_x: float
  max_y: float

  def transform(self, transform: PointTransform) -> 'RedshiftArea':
    x1, y1 = transform(self.x1, self.y1)
    x2, y2 = transform(self.x2, self.y2)
    max_x, max_y = transform(self.max_x, self.max_y)
    return dataclasses.replace(
        self,
        x1=min(x1, x2), y1=min(y1, y2),
        x2=max(x1, x2), y2=max(y1, y2),
        max_x=max_x, max_y=max_y,
    )


class Metadata:
  """Auxiliary facts travelling with a buffer, keyed by MetadataKey.

  A metadata map attached to a buffer may be read by several stages at once,
  so it is never modified in place: with_value() returns an updated copy.
  """
  def __init__(self, values: dict[MetadataKey, Any] | None = None):
    self._values = dict(values or {})

  def find(self, key: MetadataKey) -> Any | None:
    return self._values.get(key)

  def get(self, key: MetadataKey) -> Any:
    if key not in self._values:
      raise KeyError(f'No metadata for {key.name}')
    return self._values[key]

  def __contains__(self, key: MetadataKey) -> bool:
    return key in self._values

  def __len__(self) -> int:
    return len(self._values)

  def copy(self) -> 'Metadata':
    return Metadata(self._values)

  def with_value(self, key: MetadataKey, value: Any) -> 'Metadata':
    values = dict(self._values)
    values[key] = value
    return Metadata(values)

  def history(self) -> tuple[str, ...]:
    return tuple(self._values.get(MetadataKey.TRANSFORMATION_HISTORY, ()))

  def with_history(self, entry: str) -> 'Metadata':
    return self.with_value(MetadataKey.TRANSFORMATION_HISTORY,
                           self.history() + (entry,))


@dataclasses.dataclass
class ImageBuffer:
  """Mono frame buffer of shape (height, width), single precision."""
  data: npt.NDArray
  metadata: Metadata = dataclasses.field(default_factory=Metadata)

  def __post_init__(self):
    self.data = np.asarray(self.data, dtype=np.float32)
    if self.data.ndim != 2:
      raise ValueError(
          f'Expected a 2D buffer, but got {self.data.ndim:d} dimensions.')

  @classmethod
  def from_flat(cls, values: npt.ArrayLike, width: int, height: int,
                metadata: Metadata | None = None) -> 'ImageBuffer':
    values = np.asarray(values, dtype=np.float32)
    if values.size != width * height:
      raise ValueError(f'Expected {width * height:d} values for a {width:d} '
                       f'x {height:d} buffer, but got {values.size:d}.')
    return cls(values.reshape(height, width), metadata or Metadata())

  @property
  def width(self) -> int:
    return self.data.shape[1]

  @property
  def height(self) -> int:
    return self.data.shape[0]

  def flat(self) -> npt.NDArray:
    return self.data.reshape(-1)

  def copy(self) -> 'ImageBuffer':
    return ImageBuffer(np.copy(self.data), self.metadata.copy())

  def with_data(self, data: npt.NDArray) -> 'ImageBuffer':
    return ImageBuffer(data, self.metadata)

  def with_metadata(self, key: MetadataKey, value: Any) -> 'ImageBuffer':
    return ImageBuffer(self.data, self.metadata.with_value(key, value))


@dataclasses.dataclass
class RgbImage:
  r: npt.NDArray
  g: npt.NDArray
  b: npt.NDArray

  def __post_init__(self):
    self.r = np.asarray(self.r, dtype=np.float32)
    self.g = np.asarray(self.g, dtype=np.float32)
    self.b = np.asarray(self.b, dtype=np.float32)
    if not self.r.shape == self.g.shape == self.b.shape:
      raise ValueError('All channels must have the same shape.')

  @property
  def width(self) -> int:
    return self.r.shape[1]

  @property
  def height(self) -> int:
    return self.r.shape[0]

  def channels(self) -> tuple[npt.NDArray, npt.NDArray, npt.NDArray]:
    return self.r, self.g, self.b

  def to_array(self) -> npt.NDArray:
    """Returns an array of shape (height, width, 3)."""
    return np.stack((self.r, self.g, self.b), axis=2)
