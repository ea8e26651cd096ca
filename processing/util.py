import logging
import sys

_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=logging.INFO):
  """Configures the root logger so that all module loggers inherit it."""
  formatter = logging.Formatter(_LOG_FORMAT)
  root_logger = logging.getLogger()
  root_logger.setLevel(level)
  if not root_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
  for handler in root_logger.handlers:
    handler.setLevel(level)
    if handler.formatter is None:
      handler.setFormatter(formatter)


def print_title(title: str, width=80):
  if len(title) > width - 10:
    raise ValueError(
        f'Length of title must be =< {width - 10:d} characters, but is '
        f'{len(title):d} characters'
    )
  blank_row = '#' + (width - 2) * ' ' + '#'
  print()
  print(width * '#')
  print(blank_row)
  print('#' + title.center(width - 2) + '#')
  print(blank_row)
  print(width * '#')
  print()
