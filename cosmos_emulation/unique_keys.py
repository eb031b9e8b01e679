'''Partition-scoped unique key policies.

A unique key is a group of paths. Two documents in one partition collide on a key when the set of
values found at all of its paths is equal - a set, so field order and repeated values do not matter.
'''
import attr

from .document_utils import canonical, get_path_values
from .errors import BadUniqueKeyPolicyError
from .standard_keys import SYSTEM_PROPERTIES, path_segments


@attr.s(frozen=True, slots=True)
class UniqueKey:
  paths = attr.ib(converter=tuple)

  def value_set(self, document) -> frozenset:
    return frozenset(
        canonical(value) for path in self.paths for value in get_path_values(document, path))


@attr.s(frozen=True, slots=True)
class UniqueKeyPolicy:
  unique_keys = attr.ib(converter=tuple, default=())

  @staticmethod
  def from_paths(path_groups) -> 'UniqueKeyPolicy':
    '''Builds a policy from e.g. [['/CustomerId', '/ItemId', '/Type']]. Policies pass through.'''
    if path_groups is None:
      return UniqueKeyPolicy()
    if isinstance(path_groups, UniqueKeyPolicy):
      return path_groups
    for group in path_groups:
      if isinstance(group, str):
        raise BadUniqueKeyPolicyError(
            f'A unique key is a list of paths; wrap {group!r} as [{group!r}].')
    return UniqueKeyPolicy(
        [g if isinstance(g, UniqueKey) else UniqueKey(g) for g in path_groups])

  def guard(self):
    '''Refuses a policy the service would refuse when creating the container.'''
    for unique_key in self.unique_keys:
      for path in unique_key.paths:
        segments = path_segments(path)
        if not segments:
          raise BadUniqueKeyPolicyError(f'The unique key path {path!r} names no property.')
        if len(segments) == 1 and segments[0] in SYSTEM_PROPERTIES:
          raise BadUniqueKeyPolicyError(
              f"The unique key path cannot contain system properties. '{segments[0]}' is a "
              'system property.')
    return self

  def find_violation(self, document, other_documents):
    '''The first unique key |document| shares with any of |other_documents|, else None.'''
    if not self.unique_keys:
      return None
    others = list(other_documents)
    for unique_key in self.unique_keys:
      candidate = unique_key.value_set(document)
      if any(unique_key.value_set(other) == candidate for other in others):
        return unique_key
    return None
