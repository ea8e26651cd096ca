import dataclasses
import enum
import functools

import numpy as np
import numpy.typing as npt

import constants


class SpectralRay(enum.Enum):
  H_ALPHA = 'H-alpha'
  CALCIUM_K = 'Calcium (K)'
  CALCIUM_H = 'Calcium (H)'
  HELIUM_D3 = 'Helium (D3)'
  SODIUM_D2 = 'Sodium (D2)'
  MAGNESIUM_B1 = 'Magnesium (b1)'
  OTHER = 'Other'


WAVELENGTHS_NM = {
    SpectralRay.H_ALPHA: 656.281,
    SpectralRay.CALCIUM_K: 393.366,
    SpectralRay.CALCIUM_H: 396.847,
    SpectralRay.HELIUM_D3: 587.562,
    SpectralRay.SODIUM_D2: 588.995,
    SpectralRay.MAGNESIUM_B1: 518.362,
}


@functools.lru_cache(maxsize=None)
def _channel_polynomial(curve_in: int, curve_out: int) -> tuple[float, ...]:
  # Quadratic going through (0, 0), (curve_in, curve_out) and (255, 255).
  # A curve point on the black or white point leaves the channel unchanged.
  if not 0 < curve_in < 255:
    return (0.0, 1.0, 0.0)
  return tuple(np.polyfit([0, curve_in, 255], [0, curve_out, 255], 2))


@dataclasses.dataclass(frozen=True)
class ColorCurve:
  """Maps mono pixel values to colors, one curve per channel.

  Each channel curve is defined on 8 bit values by the point (in, out) it
  goes through, in addition to the black and white points.
  """
  ray: SpectralRay
  r_in: int
  r_out: int
  g_in: int
  g_out: int
  b_in: int
  b_out: int

  def to_rgb(self, mono: npt.NDArray
             ) -> tuple[npt.NDArray, npt.NDArray, npt.NDArray]:
    """Colorizes values in [0, MAX_PIXEL_VALUE]."""
    scale = constants.MAX_PIXEL_VALUE / 255
    value = np.asarray(mono, dtype=float) / scale
    channels = []
    for curve_in, curve_out in ((self.r_in, self.r_out),
                                (self.g_in, self.g_out),
                                (self.b_in, self.b_out)):
      channel = np.polyval(_channel_polynomial(curve_in, curve_out), value)
      channels.append(
          np.clip(channel * scale, 0, constants.MAX_PIXEL_VALUE).astype(
              np.float32))
    return tuple(channels)


COLOR_CURVES = {
    SpectralRay.H_ALPHA: ColorCurve(SpectralRay.H_ALPHA, 84, 139, 95, 20, 218, 65),
    SpectralRay.CALCIUM_K: ColorCurve(SpectralRay.CALCIUM_K, 0, 0, 84, 139, 218, 65),
    SpectralRay.CALCIUM_H: ColorCurve(SpectralRay.CALCIUM_H, 42, 62, 84, 139, 218, 65),
    SpectralRay.HELIUM_D3: ColorCurve(SpectralRay.HELIUM_D3, 218, 230, 210, 200, 20, 5),
    SpectralRay.SODIUM_D2: ColorCurve(SpectralRay.SODIUM_D2, 218, 230, 170, 150, 20, 5),
    SpectralRay.MAGNESIUM_B1: ColorCurve(SpectralRay.MAGNESIUM_B1, 20, 5, 218, 230, 84, 60),
}


def color_curve(ray: SpectralRay) -> ColorCurve | None:
  return COLOR_CURVES.get(ray)
