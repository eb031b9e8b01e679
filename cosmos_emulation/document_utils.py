'''Helpers for reading the serialized documents the store holds.'''
from itertools import chain

import orjson

from .emulation_logging import warning
from .errors import InvalidIdError
from .standard_keys import FORBIDDEN_ID_CHARACTERS, ID_KEY, TTL_KEY, path_segments

_MISSING = object()


def serialize(document) -> bytes:
  '''Documents arrive either as JSON-compatible mappings or already serialized (str/bytes).'''
  if isinstance(document, (bytes, bytearray, memoryview)):
    return bytes(document)
  if isinstance(document, str):
    return document.encode('utf-8')
  return orjson.dumps(document)


def deserialize(body: bytes):
  return orjson.loads(body)


def canonical(value) -> bytes:
  '''A hashable, order-independent form of any JSON value. 1 and 1.0 are the same number.'''
  return orjson.dumps(_normalize_numbers(value), option=orjson.OPT_SORT_KEYS)


def _normalize_numbers(value):
  if isinstance(value, float) and value.is_integer() and abs(value) < 2**53:
    return int(value)
  if isinstance(value, dict):
    return {k: _normalize_numbers(v) for k, v in value.items()}
  if isinstance(value, (list, tuple)):
    return [_normalize_numbers(v) for v in value]
  return value


def get_id(document):
  value = document.get(ID_KEY) if isinstance(document, dict) else None
  return value if isinstance(value, str) else None


def check_id(id_):
  if not id_:
    raise InvalidIdError(f"The document must have a non-empty string '{ID_KEY}'.")
  if any(c in id_ for c in FORBIDDEN_ID_CHARACTERS):
    raise InvalidIdError()
  return id_


def get_ttl(document, default_ttl):
  '''The document's own ttl wins over the store default; bools are not ttls.'''
  value = document.get(TTL_KEY, _MISSING) if isinstance(document, dict) else _MISSING
  if isinstance(value, int) and not isinstance(value, bool):
    return value
  if isinstance(value, float) and value.is_integer():
    return int(value)
  if value is not _MISSING:
    warning(f'Ignoring non-integer {TTL_KEY} {value!r}; using the default of {default_ttl}')
  return default_ttl


def expiry_tick(ttl, current_tick):
  if ttl is None or ttl < 0:
    return None
  return current_tick + ttl


def get_path_values(document, path):
  '''Every value found at |path|. Arrays along the way fan out, so a path may yield several.'''
  nodes = [document]
  for segment in path_segments(path):
    if segment == '[]':
      nodes = list(chain.from_iterable(n for n in nodes if isinstance(n, list)))
      continue
    next_nodes = []
    for node in nodes:
      if isinstance(node, list):
        next_nodes.extend(item[segment] for item in node if isinstance(item, dict) and segment in item)
      elif isinstance(node, dict) and segment in node:
        next_nodes.append(node[segment])
    nodes = next_nodes
  return list(chain.from_iterable(n if isinstance(n, list) else [n] for n in nodes))


def get_path_value(document, path, default=_MISSING):
  '''The single value at |path|, without array fan-out. Raises KeyError if absent and no default.'''
  node = document
  for segment in path_segments(path):
    if not isinstance(node, dict) or segment not in node:
      if default is _MISSING:
        raise KeyError(path)
      return default
    node = node[segment]
  return node
