"""Processes reconstructed Sol'Ex scans stored as .npz files.

Each file holds the reconstructed image of every pixel shift, under a key
which is the pixel shift (e.g. '0', '-3', '3'). A single 'image' key is
taken as the 0 shift. Optional keys 'frame_rate' and 'limb_samples' give
the frame rate of the scan and limb points detected during reconstruction.
"""
import argparse
import dataclasses
import functools
import logging

import numpy as np

import batch
import emitter
import events
import filepaths
import image_buffer
import params
import tasks
import util
import workflow

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Scan:
  images: dict[float, image_buffer.ImageBuffer]
  frame_rate: float | None = None
  limb_samples: np.ndarray | None = None


def load_scan(filepath: str) -> Scan:
  scan = Scan(images={})
  with np.load(filepath) as data:
    for key in data.files:
      if key == 'image':
        scan.images[0.0] = image_buffer.ImageBuffer(data[key])
      elif key == 'frame_rate':
        scan.frame_rate = float(data[key])
      elif key == 'limb_samples':
        scan.limb_samples = data[key]
      else:
        try:
          shift = float(key)
        except ValueError:
          logger.warning('Ignoring array %s of %s', key, filepath)
          continue
        scan.images[shift] = image_buffer.ImageBuffer(data[key])
  return scan


def process_scan(filepath: str, output_dir: str,
                 process_params: params.ProcessParams
                 ) -> workflow.SessionResult:
  name = filepaths.scan_name(filepath)
  scan = load_scan(filepath)
  params.save_params(filepaths.params(output_dir, name), process_params)
  with tasks.ParallelExecutor(events.LoggingBroadcaster()) as executor:
    session = workflow.ProcessingSession(
        executor, emitter.FileImageEmitter(output_dir, name), process_params,
        frame_rate=scan.frame_rate)
    result = session.run(scan.images, limb_samples=scan.limb_samples)
  for shift, disk in sorted(result.disks.items()):
    logger.info('Shift %g: tilt %.2f°, x/y ratio %.3f, black point %.1f',
                shift, np.rad2deg(disk.tilt), disk.xy_ratio,
                disk.black_point)
  return result


def main():
  parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
  parser.add_argument('scans', nargs='+', help='.npz files to process')
  parser.add_argument('--output-dir', default=filepaths.OUTPUTS_PATH)
  parser.add_argument('--params', help='JSON processing parameters')
  parser.add_argument('--debug-images', action='store_true',
                      help='also generate debug images')
  parser.add_argument('--verbose', action='store_true')
  args = parser.parse_args()

  util.setup_logging(logging.DEBUG if args.verbose else logging.INFO)
  process_params = (params.load_params(args.params) if args.params
                    else params.ProcessParams())
  if args.debug_images:
    process_params = dataclasses.replace(
        process_params,
        debug=params.DebugParams(generate_debug_images=True))

  if len(args.scans) == 1:
    util.print_title(f'Processing {filepaths.scan_name(args.scans[0])}')
    result = process_scan(args.scans[0], args.output_dir, process_params)
    succeeded = result.succeeded
  else:
    util.print_title(f'Processing {len(args.scans):d} scans')
    results = batch.process_batch([
        (filepath, functools.partial(
            process_scan, filepath, args.output_dir, process_params))
        for filepath in args.scans
    ])
    for item in results:
      logger.info('%s: %s', item.name, 'OK' if item.succeeded else 'FAILED')
    succeeded = all(item.succeeded for item in results)

  if not succeeded:
    raise SystemExit(1)


if __name__ == '__main__':
  main()
