"""Emulation logger wrapper.

Wraps the logging module so every store and query module logs the same way.

The rationale for doing this is a few:
* Messages carry the calling file and line, plus whatever context is pushed (e.g. partition key).
* Routing can be changed across the board - e.g. silenced during noisy test runs.
* Simpler API to work with.
"""
import inspect
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager

import coloredlogs
from boltons.funcutils import wraps

_logger = logging.getLogger('cosmos_emulation')
_formatter = logging.Formatter('%(asctime)s %(levelname)s %(message)s')
_handler = None
_context_list = []
_colored_logs = False

_logging_disabled = False

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def lazy_makedirs(func):

  @wraps(func)
  def wrapper(*args, **kwargs):
    path = func(*args, **kwargs)
    if not os.path.exists(path):
      os.makedirs(path)
    return path

  return wrapper


@lazy_makedirs
def get_log_dir():
  return os.path.join(os.getenv('HOME', '.'), '.cosmos_emulation', 'logs')


def set_verbosity(level):
  if level not in _LEVELS:
    raise ValueError(f'Unknown verbosity {level}; expected one of {sorted(_LEVELS)}')
  _logger.setLevel(_LEVELS[level])
  if _colored_logs:
    coloredlogs.install(level=level.upper(), logger=_logger)


def push_context(value):
  _context_list.append(str(value))


def pop_context():
  _context_list.pop()


@contextmanager
def logging_context(value):
  push_context(value)
  try:
    yield
  finally:
    pop_context()


def info(message, *args, log=True, **kwargs):
  if log and not _logging_disabled and _logger.isEnabledFor(_LEVELS['info']):
    _logger.info(_format_message(message), *args, **kwargs)


def debug(message, *args, log=True, **kwargs):
  if log and not _logging_disabled and _logger.isEnabledFor(_LEVELS['debug']):
    _logger.debug(_format_message(message), *args, **kwargs)


def warning(message, *args, log=True, **kwargs):
  if log and not _logging_disabled and _logger.isEnabledFor(_LEVELS['warning']):
    _logger.warning(_format_message(message), *args, **kwargs)


def error(message, *args, log=True, **kwargs):
  if log and not _logging_disabled and _logger.isEnabledFor(_LEVELS['error']):
    _logger.error(_format_message(message), *args, **kwargs)


def _format_message(message, include_func=False):
  filename, func, lineno = __get_call_info(2)  # info for calling function.
  filename = os.path.basename(filename)
  context_str = f'{"|".join(_context_list)}:' if _context_list else ''
  if include_func:
    return f'{filename}#{func}({lineno}):{context_str} {message}'
  else:
    return f'{filename}:{lineno}:{context_str} {message}'


def _replace_handlers(handler=None):
  '''Detaches every handler (coloredlogs' included) and installs |handler| in their place.'''
  global _handler, _colored_logs
  _colored_logs = False
  for existing in list(_logger.handlers):
    _logger.removeHandler(existing)
    if existing is _handler:
      existing.close()
  _handler = handler
  if handler:
    handler.setFormatter(_formatter)
    _logger.addHandler(handler)


def send_logs_to_file(filename='emulation.log'):
  '''Routes logs to |filename| under get_log_dir() (or to |filename| itself if absolute).'''
  _replace_handlers(
      logging.handlers.RotatingFileHandler(
          os.path.join(get_log_dir(), filename), maxBytes=10 * 1024 * 1024, backupCount=3))


def send_logs_to_stdout():
  _replace_handlers(logging.StreamHandler(sys.stdout))


def color_logs():
  global _colored_logs
  _replace_handlers()
  _colored_logs = True
  coloredlogs.install(logger=_logger)


def send_logs_to_nowhere():
  global _logging_disabled
  _logging_disabled = True


def send_logs_to_somewhere():
  global _logging_disabled
  _logging_disabled = False


def __get_call_info(function_lookback_count=1):
  '''function_lookback_count = 1 corresponds to the calling function.'''
  stack = inspect.stack()
  stack_level = function_lookback_count + 1  # To skip this function, we add 1.
  filename = stack[stack_level][1]
  lineno = stack[stack_level][2]
  func = stack[stack_level][3]

  return filename, func, lineno


# Reasonable defaults; the container resets verbosity from its config.
color_logs()
set_verbosity('info')
