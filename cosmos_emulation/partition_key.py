'''Partition keys as an explicit tagged variant.

The service distinguishes "no key supplied" (NONE) from "explicit JSON null" (NULL); both are kept
apart from every real key value rather than being encoded as magic strings.
'''
import attr

from .document_utils import canonical

_EXPLICIT = 'explicit'
_NONE = 'none'
_NULL = 'null'


@attr.s(frozen=True, slots=True, repr=False)
class PartitionKey:
  kind = attr.ib()
  value = attr.ib(default=None, eq=False)
  # Keys compare by their JSON encoding, so true and 1 name different partitions.
  encoded = attr.ib(default=None)

  @staticmethod
  def of(value) -> 'PartitionKey':
    '''Wraps a raw value. PartitionKeys pass through and None is treated as an explicit null.'''
    if isinstance(value, PartitionKey):
      return value
    if value is None:
      return PartitionKey.NULL
    if isinstance(value, (list, tuple)):
      value = tuple(value)  # Hierarchical key.
    return PartitionKey(_EXPLICIT, value, canonical(value))

  @property
  def is_none(self):
    return self.kind == _NONE

  @property
  def is_null(self):
    return self.kind == _NULL

  @property
  def is_explicit(self):
    return self.kind == _EXPLICIT

  def __repr__(self):
    if self.is_explicit:
      return f'PartitionKey({self.value!r})'
    return f'PartitionKey.{self.kind.upper()}'


PartitionKey.NONE = PartitionKey(_NONE)
PartitionKey.NULL = PartitionKey(_NULL)
