import os
import pathlib

OUTPUTS_PATH = 'outputs'


def _make_folder_and_return_path(folder: str, filename: str) -> str:
  pathlib.Path(folder).mkdir(parents=True, exist_ok=True)
  return os.path.join(folder, filename)


def scan_name(filepath: str) -> str:
  return pathlib.Path(filepath).stem


def shift_suffix(pixel_shift: float) -> str:
  if pixel_shift == 0:
    return ''
  return f'_shift{pixel_shift:+g}'


def product(output_dir: str, scan: str, kind: str, name: str,
            pixel_shift: float, extension: str) -> str:
  """Path of an output image, grouped per scan and per kind of image."""
  folder = os.path.join(output_dir, scan, kind)
  return _make_folder_and_return_path(
      folder, f'{name}{shift_suffix(pixel_shift)}.{extension}')


def params(output_dir: str, scan: str) -> str:
  return _make_folder_and_return_path(
      os.path.join(output_dir, scan), 'params.json')
