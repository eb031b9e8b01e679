from boltons.funcutils import wraps

from .emulation_logging import warning
from .errors import EmulatorError


def cached_fn(fn):
  '''A slightly fancy no-arg function cache.'''
  out = None
  run = False
  @wraps(fn)
  def wrapper(*args, **kwargs):
    nonlocal out, run
    if run:
      return out
    out = fn(*args, **kwargs)
    run = True
    return out
  return wrapper


def log_failures(fn):
  '''Wraps store coroutines so emulated service failures are logged before they propagate.'''
  @wraps(fn)
  async def wrapper(*args, **kwargs):
    try:
      return await fn(*args, **kwargs)
    except EmulatorError as e:
      warning(f'{fn.__qualname__}: {e.status_code} {type(e).__name__}: {e.reason}')
      raise
  return wrapper


def log_query_failures(fn):
  '''Synchronous counterpart of log_failures for the query path.'''
  @wraps(fn)
  def wrapper(*args, **kwargs):
    try:
      return fn(*args, **kwargs)
    except EmulatorError as e:
      warning(f'{fn.__qualname__}: {e.status_code} {type(e).__name__}: {e.reason}')
      raise
  return wrapper
