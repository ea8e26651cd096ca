"""Processing of the reconstructed images of a scan.

A ProcessingWorkflow turns the reconstructed image of one pixel shift into
the output products. Stages run on a ParallelExecutor and are chained with
continuations: ellipse fitting, banding reduction, then geometry correction.
Once the corrected disk is available, the derived images are produced
independently of each other.

A ProcessingSession runs the workflows of all the pixel shifts of a scan and
composes the images which depend on several of them.
"""
from collections.abc import Iterable, Mapping
from concurrent import futures
import dataclasses
import logging
import threading

import numpy as np
import numpy.typing as npt

import background
import banding
import compositing
import constants
import ellipse_fitting
import emitter
import errors
import events
import geometry
import image_buffer
import params
import spectral_rays
import stretching
import tasks

logger = logging.getLogger(__name__)

Kind = emitter.GeneratedImageKind
Step = params.WorkflowStep


@dataclasses.dataclass(frozen=True)
class CorrectedDisk:
  """Result of the main stages of a workflow.

  Attributes:
    geometry: output of the geometry correction.
    fit: ellipse fitted on the reconstructed image, with its limb samples.
    black_point: background level of the banding corrected image, including
      the safety factor.
    tilt: tilt angle which was corrected, in radians.
    xy_ratio: x/y ratio which was corrected.
  """
  geometry: geometry.GeometryResult
  fit: ellipse_fitting.EllipseFit
  black_point: float
  tilt: float
  xy_ratio: float

  @property
  def corrected(self) -> image_buffer.ImageBuffer:
    return self.geometry.corrected


class WorkflowState:
  """Reconstructed image of a pixel shift and the results computed from it.

  Results are recorded by worker threads and read by the workflows of other
  pixel shifts, so access is serialized.
  """
  def __init__(self, pixel_shift: float, image: image_buffer.ImageBuffer):
    self.pixel_shift = pixel_shift
    self.image = image.with_metadata(
        image_buffer.MetadataKey.PIXEL_SHIFT, pixel_shift)
    self.geometry: futures.Future | None = None
    self._lock = threading.Lock()
    self._results = {}

  def record_result(self, step: params.WorkflowStep, result):
    with self._lock:
      self._results[step] = result

  def find_result(self, step: params.WorkflowStep):
    with self._lock:
      return self._results.get(step)


class ProcessingWorkflow:
  """Processes the state at index current_step of states.

  Workflows of a step greater than 0 wait for the geometry correction of
  step 0 and reuse its tilt, x/y ratio and disk, so that all pixel shifts
  have the same geometry.

  Args:
    executor: runs the stages. Its broadcaster receives events.
    image_emitter: receives the output images.
    states: states of all the pixel shifts of the scan.
    current_step: index of the state to process.
    process_params: processing parameters.
    frame_rate: frame rate of the scan, if known.
    limb_samples: limb points detected upstream. The limb is detected on the
      reconstructed image when they are not given.
  """
  def __init__(self,
               executor: tasks.ParallelExecutor,
               image_emitter: emitter.ImageEmitter,
               states: list[WorkflowState],
               current_step: int,
               process_params: params.ProcessParams,
               frame_rate: float | None = None,
               limb_samples: npt.ArrayLike | None = None):
    self.executor = executor
    self.emitter = image_emitter
    self.states = states
    self.current_step = current_step
    self.state = states[current_step]
    self.params = process_params
    self.frame_rate = frame_rate
    self.limb_samples = limb_samples

  @property
  def broadcaster(self) -> events.Broadcaster:
    return self.executor.broadcaster

  def _enabled(self, step: params.WorkflowStep) -> bool:
    return self.params.is_enabled(step)

  def _color_curve(self) -> spectral_rays.ColorCurve | None:
    return spectral_rays.color_curve(self.params.spectrum.ray)

  def start(self) -> futures.Future:
    """Schedules all stages. Returns the future of the CorrectedDisk."""
    if self._enabled(Step.RAW_IMAGE):
      self.executor.submit('Raw image', self._emit_raw)

    fit = self.executor.submit('Ellipse fitting', self._fit_ellipse)
    banded = self.executor.then(fit, 'Banding reduction', self._reduce_banding)
    if self.current_step > 0:
      reference = self.states[0].geometry
      corrected = self.executor.all_of(
          [banded, reference], 'Geometry correction', self._correct_geometry)
    else:
      corrected = self.executor.then(
          banded, 'Geometry correction', self._correct_geometry)
    self.state.geometry = corrected

    self.executor.then(corrected, 'Disk image', self._emit_disk)
    if (self._enabled(Step.EDGE_DETECTION_IMAGE) and
        self.params.debug.generate_debug_images):
      self.executor.then(
          corrected, 'Edge detection image', self._emit_edge_detection)
    if self._enabled(Step.STRETCHED_IMAGE):
      self.executor.then(corrected, 'Stretched image', self._emit_stretched)
    if self._enabled(Step.COLORIZED_IMAGE):
      self.executor.then(corrected, 'Colorized image', self._emit_colorized)
    if self._enabled(Step.CORONAGRAPH):
      self.executor.then(corrected, 'Coronagraph', self._emit_coronagraph)
    return corrected

  def _emit_raw(self):
    image = self.state.image
    shift = self.state.pixel_shift
    self.emitter.new_mono_image(
        Kind.RAW, Step.RAW_IMAGE, 'Raw', 'recon', image,
        stretching.CutoffStrategy(constants.RAW_CUTOFF_RATIO),
        pixel_shift=shift)
    self.emitter.new_mono_image(
        Kind.RAW, Step.RAW_IMAGE, 'Raw (Linear)', 'linear', image,
        stretching.LinearStrategy(), pixel_shift=shift)

  def _fit_ellipse(self) -> ellipse_fitting.EllipseFit:
    if self.limb_samples is not None:
      samples = np.asarray(self.limb_samples, dtype=float).reshape(-1, 2)
      fit = ellipse_fitting.EllipseFit(
          ellipse_fitting.fit_ellipse(samples), samples)
    else:
      fit = ellipse_fitting.fit_limb(
          self.state.image.data, constants.LIMB_SENSITIVITY)
    logger.info('Fitted ellipse %s', fit.ellipse)
    self.state.record_result(Step.ELLIPSE_FITTING, fit)
    return fit

  def _reduce_banding(self, fit: ellipse_fitting.EllipseFit
                      ) -> tuple[ellipse_fitting.EllipseFit,
                                 image_buffer.ImageBuffer]:
    image = self.state.image.copy().with_metadata(
        image_buffer.MetadataKey.ELLIPSE, fit.ellipse)
    corrector = banding.BandingCorrector(
        self.broadcaster, self.params.banding, self.executor.interrupted)
    corrector.correct(image, fit.ellipse)
    self.state.record_result(Step.BANDING_CORRECTION, image)
    return fit, image

  def _effective_tilt(self, ellipse: ellipse_fitting.Ellipse) -> float:
    tilt = ellipse.tilt_angle()
    tilt_deg = np.rad2deg(tilt)
    forced_deg = self.params.geometry.tilt_deg
    logger.info('Tilt angle: %.2f°', tilt_deg)
    if forced_deg is not None:
      logger.info('Overriding tilt angle to %.2f°', forced_deg)
      return float(np.deg2rad(forced_deg))
    if ellipse.is_almost_circle(constants.CIRCLE_EPSILON):
      logger.info('Will not apply rotation correction as sun disk is almost '
                  'a circle (and therefore tilt angle is not reliable)')
      return 0.0
    if abs(tilt_deg) > constants.TILT_WARNING_DEG:
      self.broadcaster.broadcast(events.SuggestionEvent(
          f'Tilt angle is {tilt_deg:.2f}°. You should try to reduce it to '
          f'less than {constants.TILT_WARNING_DEG}°'))
    return tilt

  def _correct_geometry(
      self,
      banded: tuple[ellipse_fitting.EllipseFit, image_buffer.ImageBuffer],
      reference: CorrectedDisk | None = None) -> CorrectedDisk:
    fit, image = banded
    ellipse = fit.ellipse
    logger.info('Detected X/Y ratio: %.2f', ellipse.xy_ratio())
    black_point = (background.estimate_black_point(image.data, ellipse) *
                   constants.BLACK_POINT_SAFETY_FACTOR)
    geometry_params = self.params.geometry
    if reference is None:
      tilt = self._effective_tilt(ellipse)
      xy_ratio = (geometry_params.xy_ratio if geometry_params.xy_ratio
                  is not None else ellipse.xy_ratio())
      reference_disk = None
    else:
      # Shifts are combined pixel by pixel: they share the geometry of shift 0.
      logger.info('Using tilt and X/Y ratio of pixel shift %g',
                  self.states[0].pixel_shift)
      tilt = reference.tilt
      xy_ratio = reference.xy_ratio
      geometry_params = dataclasses.replace(geometry_params, xy_ratio=xy_ratio)
      reference_disk = reference.geometry.disk

    corrector = geometry.GeometryCorrector(
        self.broadcaster,
        geometry_params,
        frame_rate=self.frame_rate,
        black_point=black_point,
        reference_disk=reference_disk,
        interrupted=self.executor.interrupted,
    )
    result = corrector.correct(image, ellipse, tilt)
    logger.info('Geometry corrected image is %dx%d',
                result.corrected.width, result.corrected.height)
    self.state.record_result(Step.GEOMETRY_CORRECTION, result)
    return CorrectedDisk(geometry=result, fit=fit, black_point=black_point,
                         tilt=tilt, xy_ratio=xy_ratio)

  def _emit_disk(self, disk: CorrectedDisk):
    self.emitter.new_mono_image(
        Kind.PROCESSED, Step.GEOMETRY_CORRECTION, 'Disk', 'disk',
        disk.corrected, stretching.LinearStrategy(),
        pixel_shift=self.state.pixel_shift)

  def _emit_edge_detection(self, disk: CorrectedDisk):
    debug_image = compositing.edge_detection_image(
        self.state.image.data.shape, disk.fit)
    self.emitter.new_mono_image(
        Kind.DEBUG, Step.EDGE_DETECTION_IMAGE, 'Edge detection',
        'edge-detection', debug_image, stretching.LinearStrategy(),
        pixel_shift=self.state.pixel_shift)

  def _emit_stretched(self, disk: CorrectedDisk):
    self.emitter.new_mono_image(
        Kind.PROCESSED, Step.STRETCHED_IMAGE, 'Stretched', 'stretched',
        disk.corrected,
        stretching.AutohistogramStrategy(
            self.params.stretch.autohistogram_gamma),
        pixel_shift=self.state.pixel_shift)

  def _emit_colorized(self, disk: CorrectedDisk):
    curve = self._color_curve()
    if curve is None:
      return
    image = stretching.CutoffStrategy(
        constants.COLORIZED_CUTOFF_RATIO).stretched(disk.corrected)
    self.emitter.new_color_image(
        Kind.PROCESSED, Step.COLORIZED_IMAGE,
        f'Colorized ({curve.ray.value})', 'colorized', image,
        stretching.ArcsinhStrategy(disk.black_point,
                                   constants.ARCSINH_STRETCH,
                                   constants.COLORIZED_MAX_STRETCH),
        lambda mono: compositing.colorize(curve, mono),
        pixel_shift=self.state.pixel_shift)

  def _coronagraph_ellipse(self, corrected: image_buffer.ImageBuffer,
                           fallback: ellipse_fitting.Ellipse
                           ) -> ellipse_fitting.Ellipse:
    try:
      return ellipse_fitting.fit_limb(
          corrected.data, constants.CORONAGRAPH_LIMB_SENSITIVITY).ellipse
    except errors.RegressionError as e:
      logger.warning('Using the corrected ellipse for the coronagraph: %s', e)
      return fallback

  def _emit_coronagraph(self, disk: CorrectedDisk):
    corrected = disk.corrected
    shift = self.state.pixel_shift
    ellipse = self._coronagraph_ellipse(corrected, disk.geometry.ellipse)
    tasks.raise_if_interrupted(self.executor.interrupted)
    corona = compositing.coronagraph(corrected, ellipse, disk.black_point)
    self.emitter.new_mono_image(
        Kind.PROCESSED, Step.CORONAGRAPH, 'Coronagraph', 'protus', corona,
        stretching.LinearStrategy(), pixel_shift=shift)

    mix = compositing.coronagraph_mix(corrected, corona, ellipse)
    curve = self._color_curve()
    if curve is not None:
      self.emitter.new_color_image(
          Kind.PROCESSED, Step.CORONAGRAPH, 'Mix', 'mix', mix,
          stretching.ArcsinhStrategy(disk.black_point,
                                     constants.ARCSINH_STRETCH,
                                     constants.COLORIZED_MAX_STRETCH),
          lambda mono: compositing.colorize(curve, mono),
          pixel_shift=shift)
    else:
      self.emitter.new_mono_image(
          Kind.PROCESSED, Step.CORONAGRAPH, 'Mix', 'mix', mix,
          stretching.LinearStrategy(), pixel_shift=shift)


def required_pixel_shifts(process_params: params.ProcessParams,
                          script_shifts: Iterable[float] = ()
                          ) -> list[float]:
  """Returns the pixel shifts to reconstruct for a scan, step 0 first.

  The first one is always the 0 shift, followed by the Doppler shifts when
  the Doppler image is enabled, and by the shifts requested by scripts.
  """
  shifts = {0.0}
  spectrum = process_params.spectrum
  if (process_params.is_enabled(Step.DOPPLER_IMAGE) and
      spectrum.ray == spectral_rays.SpectralRay.H_ALPHA):
    shifts.update((-float(spectrum.doppler_shift),
                   float(spectrum.doppler_shift)))
  shifts.update(float(shift) for shift in script_shifts)
  return [0.0] + sorted(shifts - {0.0})


@dataclasses.dataclass
class SessionResult:
  disks: dict[float, CorrectedDisk]
  failures: list[errors.ProcessingFailure]
  interrupted: bool = False

  @property
  def succeeded(self) -> bool:
    return not self.failures and not self.interrupted


class ProcessingSession:
  """Processes all the reconstructed pixel shifts of a scan.

  Args:
    executor: runs the stages of all workflows of the scan.
    image_emitter: receives the output images.
    process_params: processing parameters.
    frame_rate: frame rate of the scan, if known.
  """
  def __init__(self,
               executor: tasks.ParallelExecutor,
               image_emitter: emitter.ImageEmitter,
               process_params: params.ProcessParams,
               frame_rate: float | None = None):
    self.executor = executor
    self.emitter = image_emitter
    self.params = process_params
    self.frame_rate = frame_rate
    self.states: list[WorkflowState] = []

  def find_state(self, pixel_shift: float) -> WorkflowState | None:
    for state in self.states:
      if state.pixel_shift == pixel_shift:
        return state
    return None

  def start(self,
            images: Mapping[float, image_buffer.ImageBuffer],
            limb_samples: npt.ArrayLike | None = None
            ) -> dict[float, futures.Future]:
    """Schedules the workflows of images, keyed by pixel shift.

    The 0 shift is processed as step 0 when present, its disk is then used
    to crop the other shifts.
    """
    if not images:
      raise errors.InvalidArgument('No image to process.')
    shifts = sorted(images, key=lambda shift: (shift != 0, shift))
    self.states = [WorkflowState(shift, images[shift]) for shift in shifts]
    geometry_futures = {}
    for step, state in enumerate(self.states):
      workflow = ProcessingWorkflow(
          self.executor, self.emitter, self.states, step, self.params,
          frame_rate=self.frame_rate, limb_samples=limb_samples)
      geometry_futures[state.pixel_shift] = workflow.start()
    self._start_doppler()
    return geometry_futures

  def _start_doppler(self):
    spectrum = self.params.spectrum
    if (not self.params.is_enabled(Step.DOPPLER_IMAGE) or
        spectrum.ray != spectral_rays.SpectralRay.H_ALPHA):
      return
    first = self.find_state(-spectrum.doppler_shift)
    second = self.find_state(spectrum.doppler_shift)
    if first is None or second is None:
      logger.info('Doppler image requires the pixel shifts %g and %g',
                  -spectrum.doppler_shift, spectrum.doppler_shift)
      return
    self.executor.all_of(
        [first.geometry, second.geometry], 'Doppler image', self._emit_doppler)

  def _emit_doppler(self, first: CorrectedDisk, second: CorrectedDisk):
    self.emitter.new_rgb_image(
        Kind.PROCESSED, Step.DOPPLER_IMAGE, 'Doppler', 'doppler',
        stretching.ArcsinhStrategy(first.black_point,
                                   constants.DOPPLER_STRETCH,
                                   constants.DOPPLER_MAX_STRETCH),
        lambda: compositing.doppler_rgb(first.corrected, second.corrected))

  def emit_script_images(
      self,
      images: Mapping[str, image_buffer.ImageBuffer | image_buffer.RgbImage]):
    """Emits images computed by scripts, keyed by title."""
    for title, image in images.items():
      name = title.lower().replace(' ', '-')
      if isinstance(image, image_buffer.RgbImage):
        self.executor.submit(
            f'Script image {title}', self.emitter.new_rgb_image,
            Kind.IMAGE_MATH, None, title, name, stretching.LinearStrategy(),
            lambda image=image: image)
      else:
        self.executor.submit(
            f'Script image {title}', self.emitter.new_mono_image,
            Kind.IMAGE_MATH, None, title, name, image,
            stretching.LinearStrategy())

  def interrupt(self):
    self.executor.interrupt()

  def run(self,
          images: Mapping[float, image_buffer.ImageBuffer],
          script_images: Mapping[str, image_buffer.ImageBuffer |
                                 image_buffer.RgbImage] | None = None,
          limb_samples: npt.ArrayLike | None = None) -> SessionResult:
    """Processes images and waits for all their output images."""
    geometry_futures = self.start(images, limb_samples)
    if script_images:
      self.emit_script_images(script_images)
    self.executor.wait()

    disks = {}
    for shift, future in geometry_futures.items():
      if future.done() and not future.cancelled() and future.exception() is None:
        disks[shift] = future.result()
    return SessionResult(disks=disks,
                         failures=self.executor.failures(),
                         interrupted=self.executor.interrupted.is_set())
