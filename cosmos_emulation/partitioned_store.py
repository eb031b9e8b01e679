'''An in-memory, partitioned document store that behaves like the service's write path.

Mutations run one at a time under a single store-wide asyncio lock; nothing inside that region
awaits, so a writer cancelled while waiting for the lock changes nothing and a writer holding it
always finishes. Reads take no lock. Records are immutable and swapped in whole, so a reader sees
either the old version or the new one.

Change subscribers are called after the lock is released, in the writer's task. A subscriber that
raises fails the write call even though the write is already committed, and a subscriber must not
write back to the same store before returning.
'''
import asyncio
import inspect

from .document_record import DocumentRecord, ItemResponse, RequestOptions, StoredItem
from .document_store import DocumentStore
from .document_utils import (check_id, deserialize, expiry_tick, get_id, get_path_value, get_ttl,
                             serialize)
from .emulation_logging import debug, error, info, logging_context
from .errors import (AlreadyExistsError, ConcurrencyMismatchError, InvalidArgumentError,
                     NotFoundError, PreconditionRequiredError, UniqueConstraintViolationError)
from .partition_key import PartitionKey
from .query.evaluator import compile_predicate
from .query.expressions import Lambda
from .query.validator import QueryCapabilityValidator
from .standard_keys import DEFAULT_PARTITION_KEY_PATH
from .unique_keys import UniqueKeyPolicy
from .utils import log_failures, log_query_failures

_MISSING = object()


class PartitionedStore(DocumentStore):

  def __init__(self,
               partition_key_path=DEFAULT_PARTITION_KEY_PATH,
               unique_key_policy=None,
               default_time_to_live=-1):
    self.partition_key_path = partition_key_path
    self.unique_key_policy = UniqueKeyPolicy.from_paths(unique_key_policy).guard()
    self.default_time_to_live = default_time_to_live
    self._partitions = {}
    self._current_tick = 0
    self._lock = None
    self._lock_loop = None
    self._subscribers = []

  @property
  def current_tick(self):
    return self._current_tick

  @property
  def _write_region(self) -> asyncio.Lock:
    '''The write lock for the running event loop.

    A store outlives the loops that use it (each asyncio.run makes a new one) and an asyncio.Lock
    only works in one loop, so a fresh lock is made whenever the loop changes.
    '''
    loop = asyncio.get_running_loop()
    if self._lock_loop is not loop:
      self._lock = asyncio.Lock()
      self._lock_loop = loop
    return self._lock

  # Change notifications.

  def subscribe(self, callback):
    '''|callback| receives a list of changed documents and may be a coroutine function.'''
    self._subscribers.append(callback)

  def unsubscribe(self, callback):
    self._subscribers.remove(callback)

  async def _publish(self, records):
    if not records:
      return
    for callback in list(self._subscribers):
      try:
        result = callback([record.document for record in records])
        if inspect.isawaitable(result):
          await result
      except Exception as e:
        error(f'Change subscriber {callback!r} failed: {e}')
        raise

  # Writes.

  @log_failures
  async def create(self, document, partition_key=None, options=None) -> ItemResponse:
    body, parsed, partition_key = self._prepare(document, partition_key)
    async with self._write_region:
      id_ = get_id(parsed)
      if id_ is not None and id_ in self._partitions.get(partition_key, {}):
        raise AlreadyExistsError(f'Entity with the specified id already exists in the system. '
                                 f'id: {id_}')
      response = self._upsert(body, parsed, partition_key, options)
    await self._publish([response.record])
    return response

  add = create

  @log_failures
  async def upsert(self, document, partition_key=None, options=None) -> ItemResponse:
    body, parsed, partition_key = self._prepare(document, partition_key)
    async with self._write_region:
      response = self._upsert(body, parsed, partition_key, options)
    await self._publish([response.record])
    return response

  @log_failures
  async def replace(self, id_, document, partition_key=None, options=None) -> ItemResponse:
    body, parsed, partition_key = self._prepare(document, partition_key)
    # An id the service refuses is reported as such, never as a missing item.
    check_id(get_id(parsed))
    async with self._write_region:
      if id_ not in self._partitions.get(partition_key, {}):
        raise NotFoundError(f'Entity with the specified id does not exist in the system. id: {id_}')
      response = self._upsert(body, parsed, partition_key, options)
    await self._publish([response.record])
    return response

  @log_failures
  async def delete(self, id_, partition_key, options=None):
    partition_key = PartitionKey.of(partition_key)
    options = options or RequestOptions()
    async with self._write_region:
      existing = self._partitions.get(partition_key, {}).get(id_)
      if existing is None:
        raise NotFoundError(f'Entity with the specified id does not exist in the system. id: {id_}')
      if options.if_match_etag is not None and options.if_match_etag != existing.etag:
        raise ConcurrencyMismatchError()
      del self._partitions[partition_key][id_]
      debug(f'Deleted {id_} from {partition_key}')

  remove = delete

  def _prepare(self, document, partition_key):
    '''Serializes |document| and resolves which partition it is written to.'''
    body = serialize(document)
    parsed = deserialize(body)
    if partition_key is None:
      partition_key = self.partition_key_for(parsed)
    return body, parsed, PartitionKey.of(partition_key)

  def partition_key_for(self, document) -> PartitionKey:
    '''The key the service would extract from |document| at the partition key path.'''
    value = get_path_value(document, self.partition_key_path, _MISSING)
    if value is _MISSING:
      return PartitionKey.NONE
    return PartitionKey.of(value)

  def _upsert(self, body, parsed, partition_key, options) -> ItemResponse:
    '''The write itself. Callers must hold the write region.

    Failure precedence follows what the service reports: id validity, missing etag while a
    mismatch is queued, the queued mismatch, unique keys, then the supplied etag.
    '''
    options = options or RequestOptions()
    id_ = check_id(get_id(parsed))
    partition = self._partitions.setdefault(partition_key, {})
    existing = partition.get(id_)

    if existing is not None:
      if existing.require_etag_on_next_update and not (options.if_match_etag or '').strip():
        raise PreconditionRequiredError()
      if existing.has_scheduled_etag_mismatch:
        partition[id_] = existing.change_etag()
        raise ConcurrencyMismatchError()

    others = (record.document for record in partition.values() if record.id != id_)
    violated = self.unique_key_policy.find_violation(parsed, others)
    if violated is not None:
      raise UniqueConstraintViolationError(
          f'Unique index constraint violation on paths {list(violated.paths)}.')

    if (existing is not None and options.if_match_etag is not None and
        options.if_match_etag != existing.etag):
      raise ConcurrencyMismatchError()

    expires = expiry_tick(get_ttl(parsed, self.default_time_to_live), self._current_tick)
    if existing is None:
      record = DocumentRecord(id_, body, partition_key, expires)
    else:
      record = existing.next_version(body, expires)
    partition[id_] = record
    with logging_context(partition_key):
      debug(f'{"Updated" if existing else "Inserted"} {id_} with etag {record.etag}')
    return ItemResponse(record, is_update=existing is not None)

  # Reads.

  def read(self, id_, partition_key):
    '''The current record for |id_|, or None.'''
    return self._partitions.get(PartitionKey.of(partition_key), {}).get(id_)

  get = read

  def _records(self, partition_key=None):
    '''Snapshot of the records in one partition, or in all of them when |partition_key| is None.'''
    if partition_key is None:
      return [record for partition in list(self._partitions.values())
              for record in list(partition.values())]
    return list(self._partitions.get(PartitionKey.of(partition_key), {}).values())

  def items(self, partition_key=None):
    return [StoredItem(r.partition_key, r.id, r.document) for r in self._records(partition_key)]

  @log_query_failures
  def query(self, partition_key=None, predicate=None, model_type=None) -> list:
    '''Documents in the partition (all partitions if None) matching |predicate|.

    The predicate is checked before anything is scanned, so an unsupported one fails the same way
    whether or not the partition holds documents.
    '''
    matches = self._compile(predicate, model_type)
    return [d for d in (r.document for r in self._records(partition_key)) if matches(d)]

  @log_query_failures
  def count(self, partition_key=None, predicate=None, model_type=None) -> int:
    matches = self._compile(predicate, model_type)
    return sum(1 for r in self._records(partition_key) if matches(r.document))

  def _compile(self, predicate, model_type):
    if predicate is None:
      return lambda document: True
    if not isinstance(predicate, Lambda):
      raise TypeError(f'predicate must be a Lambda, got {type(predicate).__name__}')
    if model_type is None:
      model_type = predicate.parameters[0].type
    return compile_predicate(QueryCapabilityValidator(model_type).validate(predicate))

  # Test controls.

  @log_failures
  async def schedule_concurrency_mismatch(self, id_, partition_key):
    '''Makes the next update of |id_| lose a simulated race with another writer.

    Not part of the service's contract. The update after that one succeeds, but every update
    from now on must present an etag.
    '''
    partition_key = PartitionKey.of(partition_key)
    async with self._write_region:
      existing = self._partitions.get(partition_key, {}).get(id_)
      if existing is None:
        raise NotFoundError(f'Entity with the specified id does not exist in the system. id: {id_}')
      self._partitions[partition_key][id_] = existing.schedule_mismatch()

  @log_failures
  async def advance_clock(self, seconds):
    if seconds < 0:
      raise InvalidArgumentError('Seconds must be a positive value')
    async with self._write_region:
      self._current_tick += seconds
      evicted = self._evict_expired()
    info(f'Advanced clock by {seconds} to {self._current_tick}; evicted {evicted} documents')

  def _evict_expired(self):
    evicted = 0
    for partition in self._partitions.values():
      for id_, record in list(partition.items()):
        if record.is_expired(self._current_tick):
          del partition[id_]
          evicted += 1
    return evicted

  async def clear(self):
    async with self._write_region:
      self._partitions = {}
      self._current_tick = 0
    info('Cleared all documents')
