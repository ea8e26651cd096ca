import dataclasses
import enum
import json

import cattrs

import constants
import errors
import spectral_rays


class AutocropMode(enum.Enum):
  OFF = 'off'
  RADIUS_1_1 = 'radius_1_1'
  RADIUS_1_2 = 'radius_1_2'
  RADIUS_1_5 = 'radius_1_5'
  SOURCE_WIDTH = 'source_width'


AUTOCROP_RADIUS_FACTORS = {
    AutocropMode.RADIUS_1_1: 1.1,
    AutocropMode.RADIUS_1_2: 1.2,
    AutocropMode.RADIUS_1_5: 1.5,
}


class WorkflowStep(enum.Enum):
  RAW_IMAGE = 'raw_image'
  ELLIPSE_FITTING = 'ellipse_fitting'
  BANDING_CORRECTION = 'banding_correction'
  GEOMETRY_CORRECTION = 'geometry_correction'
  EDGE_DETECTION_IMAGE = 'edge_detection_image'
  STRETCHED_IMAGE = 'stretched_image'
  COLORIZED_IMAGE = 'colorized_image'
  CORONAGRAPH = 'coronagraph'
  DOPPLER_IMAGE = 'doppler_image'


@dataclasses.dataclass(frozen=True)
class GeometryParams:
  tilt_deg: float | None = None
  xy_ratio: float | None = None
  autocrop: AutocropMode = AutocropMode.OFF
  disallow_downsampling: bool = False

  def __post_init__(self):
    if self.xy_ratio is not None and not self.xy_ratio > 0:
      raise errors.InvalidParameter(
          f'X/Y ratio must be positive, but is {self.xy_ratio}')


@dataclasses.dataclass(frozen=True)
class BandingParams:
  width: int = constants.DEFAULT_BANDING_WIDTH
  passes: int = constants.DEFAULT_BANDING_PASSES

  def __post_init__(self):
    if self.width < 1:
      raise errors.InvalidParameter(
          f'Banding width must be at least 1 pixel, but is {self.width}')
    if self.passes < 0:
      raise errors.InvalidParameter(
          f'Number of banding passes cannot be negative, but is {self.passes}')


@dataclasses.dataclass(frozen=True)
class SpectrumParams:
  ray: spectral_rays.SpectralRay = spectral_rays.SpectralRay.H_ALPHA
  doppler_shift: float = 3


@dataclasses.dataclass(frozen=True)
class DebugParams:
  generate_debug_images: bool = False


@dataclasses.dataclass(frozen=True)
class StretchParams:
  autohistogram_gamma: float = constants.DEFAULT_AUTOHISTOGRAM_GAMMA

  def __post_init__(self):
    if not self.autohistogram_gamma > 1:
      raise errors.InvalidParameter(
          f'Gamma must be greater than 1, but is {self.autohistogram_gamma}')


def _all_steps() -> list[WorkflowStep]:
  return list(WorkflowStep)


@dataclasses.dataclass(frozen=True)
class ProcessParams:
  spectrum: SpectrumParams = SpectrumParams()
  debug: DebugParams = DebugParams()
  geometry: GeometryParams = GeometryParams()
  banding: BandingParams = BandingParams()
  stretch: StretchParams = StretchParams()
  steps: list[WorkflowStep] = dataclasses.field(default_factory=_all_steps)

  def is_enabled(self, step: WorkflowStep) -> bool:
    return step in self.steps


def save_params(filepath: str, process_params: ProcessParams):
  serialized = cattrs.unstructure(process_params)
  with open(filepath, 'w') as f:
    f.write(json.dumps(serialized, indent=2))


def load_params(filepath: str) -> ProcessParams:
  with open(filepath, 'r') as f:
    serialized = json.loads(f.read())
  return cattrs.structure(serialized, ProcessParams)
