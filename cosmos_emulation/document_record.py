'''Versioned documents as the store holds them, and the responses writes hand back.

Records are immutable: an update installs a new record rather than touching the old one, so a
reader holding a record never sees it change underneath it.
'''
import uuid
from http import HTTPStatus

import attr

from .document_utils import deserialize


def generate_etag():
  return f'"{uuid.uuid4()}"'


@attr.s(frozen=True, slots=True)
class DocumentRecord:
  id = attr.ib()
  body = attr.ib(repr=False)  # Serialized JSON (bytes).
  partition_key = attr.ib()
  expiry_tick = attr.ib(default=None)
  etag = attr.ib(factory=generate_etag)
  # An outside reader is expected to retry with the latest etag, so updates without one are refused.
  require_etag_on_next_update = attr.ib(default=False)
  # The next update loses a simulated race regardless of the etag it presents.
  has_scheduled_etag_mismatch = attr.ib(default=False)

  @property
  def document(self):
    '''A freshly deserialized copy of the body.'''
    return deserialize(self.body)

  def is_expired(self, current_tick):
    return self.expiry_tick is not None and current_tick >= self.expiry_tick

  def schedule_mismatch(self) -> 'DocumentRecord':
    return attr.evolve(self, require_etag_on_next_update=True, has_scheduled_etag_mismatch=True)

  def change_etag(self) -> 'DocumentRecord':
    return attr.evolve(self, etag=generate_etag(), has_scheduled_etag_mismatch=False)

  def next_version(self, body, expiry_tick) -> 'DocumentRecord':
    '''The record a successful update installs: fresh etag, doom cleared, etag requirement kept.'''
    return DocumentRecord(
        id=self.id,
        body=body,
        partition_key=self.partition_key,
        expiry_tick=expiry_tick,
        require_etag_on_next_update=self.require_etag_on_next_update)


@attr.s(frozen=True, slots=True)
class ItemResponse:
  record = attr.ib()
  is_update = attr.ib()

  @property
  def status_code(self):
    return int(HTTPStatus.OK if self.is_update else HTTPStatus.CREATED)

  @property
  def etag(self):
    return self.record.etag

  @property
  def resource(self):
    return self.record.document


@attr.s(frozen=True, slots=True)
class StoredItem:
  '''A point-in-time view of one stored document, for test assertions.'''
  partition_key = attr.ib()
  id = attr.ib()
  document = attr.ib()


@attr.s(frozen=True, slots=True)
class RequestOptions:
  if_match_etag = attr.ib(default=None)
