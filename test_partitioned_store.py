import asyncio

import orjson
import pytest
from azure.cosmos.exceptions import (CosmosAccessConditionFailedError, CosmosHttpResponseError,
                                     CosmosResourceExistsError, CosmosResourceNotFoundError)

from cosmos_emulation import (AlreadyExistsError, BadUniqueKeyPolicyError,
                              ConcurrencyMismatchError, InvalidArgumentError, InvalidIdError,
                              NotFoundError, PartitionKey, PartitionedStore,
                              PreconditionRequiredError, RequestOptions,
                              UniqueConstraintViolationError)
from cosmos_emulation import emulation_logging

TRIPLE_KEY = [['/CustomerId', '/ItemId', '/Type']]


def run(coro):
  return asyncio.run(coro)


def _gen_order(id_, type_=1, partition_key='pk', **extra):
  doc = {
      'id': id_,
      'partitionKey': partition_key,
      'CustomerId': 'Fred',
      'ItemId': 'MT1',
      'Type': type_,
  }
  doc.update(extra)
  return doc


@pytest.fixture(autouse=True)
def quiet_logs():
  emulation_logging.send_logs_to_nowhere()
  yield
  emulation_logging.send_logs_to_somewhere()


@pytest.mark.parametrize('invalid', ['/', '\\', '\\\\', '#', '?'])
def test_invalid_ids_fail_every_write(invalid):
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)
  doc = _gen_order(f'url{invalid}WillBreak')

  async def _run():
    with pytest.raises(InvalidIdError) as e:
      await store.create(doc)
    assert e.value.status_code == 400
    with pytest.raises(InvalidIdError):
      await store.upsert(doc, 'pk', RequestOptions(if_match_etag='"stale"'))
    with pytest.raises(InvalidIdError):
      await store.replace(doc['id'], doc, 'pk')
    with pytest.raises(InvalidIdError):
      await store.upsert(orjson.dumps(doc))

  run(_run())
  assert store.items() == []


def test_missing_id_is_invalid():
  store = PartitionedStore()
  with pytest.raises(InvalidIdError):
    run(store.upsert({'partitionKey': 'pk', 'name': 'no id'}))
  with pytest.raises(InvalidIdError):
    run(store.upsert({'id': '', 'partitionKey': 'pk'}))


def test_upsert_then_read_round_trips():
  store = PartitionedStore()
  doc = _gen_order('A', nested={'tags': ['a', 'b']})

  response = run(store.upsert(doc))
  assert not response.is_update
  assert response.status_code == 201

  record = store.read('A', 'pk')
  assert record.document == doc
  assert record.etag and record.etag == response.etag
  assert record.partition_key == PartitionKey.of('pk')


def test_update_changes_etag():
  store = PartitionedStore()
  first = run(store.upsert(_gen_order('A')))
  second = run(store.upsert(_gen_order('A', type_=2)))
  assert second.is_update
  assert second.status_code == 200
  assert second.etag != first.etag
  assert store.read('A', 'pk').document['Type'] == 2


def test_reads_do_not_alias_store_state():
  store = PartitionedStore()
  run(store.upsert(_gen_order('A')))
  doc = store.read('A', 'pk').document
  doc['CustomerId'] = 'Mutated'
  assert store.read('A', 'pk').document['CustomerId'] == 'Fred'
  assert store.query('pk')[0]['CustomerId'] == 'Fred'


def test_read_missing_returns_none():
  store = PartitionedStore()
  assert store.read('missing', 'pk') is None
  assert store.get('missing', 'other') is None


def test_create_existing_id_fails():
  store = PartitionedStore()
  run(store.create(_gen_order('A')))
  with pytest.raises(AlreadyExistsError) as e:
    run(store.add(_gen_order('A', type_=2)))
  assert e.value.status_code == 409
  assert isinstance(e.value, CosmosResourceExistsError)
  assert store.read('A', 'pk').document['Type'] == 1


def test_same_id_in_different_partitions():
  store = PartitionedStore()
  run(store.create(_gen_order('A', partition_key='one')))
  run(store.create(_gen_order('A', partition_key='two', type_=2)))
  assert store.read('A', 'one').document['Type'] == 1
  assert store.read('A', 'two').document['Type'] == 2
  assert store.count() == 2
  assert store.count('one') == 1


def test_partition_key_is_derived_from_path():
  store = PartitionedStore(partition_key_path='/tenant/name')
  run(store.upsert({'id': 'A', 'tenant': {'name': 'acme'}}))
  assert store.read('A', 'acme') is not None


def test_none_and_null_partitions_are_distinct():
  store = PartitionedStore()
  run(store.upsert({'id': 'A'}))  # No partitionKey field.
  run(store.upsert({'id': 'B', 'partitionKey': None}))

  assert store.read('A', PartitionKey.NONE) is not None
  assert store.read('A', PartitionKey.NULL) is None
  assert store.read('B', PartitionKey.NULL) is not None
  assert store.read('B', None) is not None
  assert store.read('A', '###PartitionKeyNone###') is None
  assert [i.id for i in store.items(PartitionKey.NONE)] == ['A']


def test_replace_missing_fails_not_found():
  store = PartitionedStore()
  with pytest.raises(NotFoundError) as e:
    run(store.replace('A', _gen_order('A'), 'pk'))
  assert e.value.status_code == 404
  assert isinstance(e.value, CosmosResourceNotFoundError)


def test_replace_existing():
  store = PartitionedStore()
  created = run(store.create(_gen_order('A')))
  replaced = run(store.replace('A', _gen_order('A', type_=3), 'pk',
                               RequestOptions(if_match_etag=created.etag)))
  assert replaced.is_update
  assert store.read('A', 'pk').document['Type'] == 3


def test_delete_missing_always_fails():
  store = PartitionedStore()
  with pytest.raises(NotFoundError):
    run(store.delete('A', 'pk'))
  run(store.upsert(_gen_order('A')))
  run(store.remove('A', 'pk'))
  with pytest.raises(NotFoundError):
    run(store.delete('A', 'pk'))


def test_delete_with_etag():
  store = PartitionedStore()
  response = run(store.upsert(_gen_order('A')))
  with pytest.raises(ConcurrencyMismatchError) as e:
    run(store.delete('A', 'pk', RequestOptions(if_match_etag='"stale"')))
  assert e.value.status_code == 412
  assert store.read('A', 'pk') is not None
  run(store.delete('A', 'pk', RequestOptions(if_match_etag=response.etag)))
  assert store.read('A', 'pk') is None


def test_upsert_with_stale_etag_fails():
  store = PartitionedStore()
  first = run(store.upsert(_gen_order('A')))
  run(store.upsert(_gen_order('A', type_=2)))
  with pytest.raises(ConcurrencyMismatchError) as e:
    run(store.upsert(_gen_order('A', type_=3), options=RequestOptions(if_match_etag=first.etag)))
  assert isinstance(e.value, CosmosAccessConditionFailedError)
  assert store.read('A', 'pk').document['Type'] == 2


def test_etag_is_ignored_on_insert():
  store = PartitionedStore()
  response = run(store.upsert(_gen_order('A'), options=RequestOptions(if_match_etag='"any"')))
  assert not response.is_update


def test_triple_unique_key_scenario():
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)

  async def _run():
    await store.create(_gen_order('A', type_=1))
    with pytest.raises(UniqueConstraintViolationError) as e:
      await store.create(_gen_order('B', type_=1))
    assert e.value.status_code == 409
    with pytest.raises(UniqueConstraintViolationError):
      await store.upsert(_gen_order('B', type_=1))
    return await store.create(_gen_order('B', type_=2))

  response = run(_run())
  assert not response.is_update
  assert sorted(i.id for i in store.items('pk')) == ['A', 'B']


def test_unique_key_excludes_document_itself():
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)
  run(store.create(_gen_order('A')))
  response = run(store.upsert(_gen_order('A', note='same keys, same id')))
  assert response.is_update


def test_unique_key_is_scoped_to_partition():
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)
  run(store.create(_gen_order('A', partition_key='one')))
  run(store.create(_gen_order('B', partition_key='two')))
  assert store.count() == 2


def test_unique_key_compares_value_sets():
  store = PartitionedStore(unique_key_policy=[['/tags']])
  run(store.create({'id': 'A', 'partitionKey': 'pk', 'tags': ['x', 'y']}))
  with pytest.raises(UniqueConstraintViolationError):
    run(store.create({'id': 'B', 'partitionKey': 'pk', 'tags': ['y', 'x', 'x']}))
  run(store.create({'id': 'C', 'partitionKey': 'pk', 'tags': ['x']}))


def test_unique_key_policy_cannot_include_id():
  with pytest.raises(BadUniqueKeyPolicyError) as e:
    PartitionedStore(unique_key_policy=[['/id', '/CustomerId']])
  assert e.value.status_code == 400
  assert isinstance(e.value, CosmosHttpResponseError)


def test_error_shape_matches_service():
  store = PartitionedStore()
  with pytest.raises(CosmosHttpResponseError) as e:
    run(store.delete('A', 'pk'))
  assert e.value.status_code == 404
  assert e.value.sub_status == 0
  assert e.value.activity_id == ''
  assert e.value.request_charge == 0
  assert 'does not exist' in e.value.reason


def test_scheduled_mismatch_fails_once():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A'))
    await store.schedule_concurrency_mismatch('A', 'pk')
    etag = store.read('A', 'pk').etag
    with pytest.raises(ConcurrencyMismatchError):
      await store.upsert(_gen_order('A', type_=2), options=RequestOptions(if_match_etag=etag))
    # The racing writer moved the etag on.
    assert store.read('A', 'pk').etag != etag
    assert store.read('A', 'pk').document['Type'] == 1
    latest = store.read('A', 'pk').etag
    return await store.upsert(_gen_order('A', type_=3), options=RequestOptions(if_match_etag=latest))

  response = run(_run())
  assert response.is_update
  assert store.read('A', 'pk').document['Type'] == 3


def test_scheduled_mismatch_requires_etag():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A'))
    await store.schedule_concurrency_mismatch('A', 'pk')
    with pytest.raises(PreconditionRequiredError):
      await store.upsert(_gen_order('A', type_=2))
    etag = store.read('A', 'pk').etag
    with pytest.raises(ConcurrencyMismatchError):
      await store.upsert(_gen_order('A', type_=2), options=RequestOptions(if_match_etag=etag))
    etag = store.read('A', 'pk').etag
    await store.upsert(_gen_order('A', type_=2), options=RequestOptions(if_match_etag=etag))
    # The requirement outlives the successful update.
    with pytest.raises(PreconditionRequiredError):
      await store.upsert(_gen_order('A', type_=4))

  run(_run())


def test_scheduled_mismatch_beats_unique_key_violation():
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)

  async def _run():
    await store.create(_gen_order('A', type_=1))
    await store.create(_gen_order('B', type_=2))
    await store.schedule_concurrency_mismatch('B', 'pk')
    etag = store.read('B', 'pk').etag
    with pytest.raises(ConcurrencyMismatchError):
      await store.upsert(_gen_order('B', type_=1), options=RequestOptions(if_match_etag=etag))

  run(_run())


def test_unique_key_violation_beats_stale_etag():
  store = PartitionedStore(unique_key_policy=TRIPLE_KEY)

  async def _run():
    await store.create(_gen_order('A', type_=1))
    await store.create(_gen_order('B', type_=2))
    with pytest.raises(UniqueConstraintViolationError):
      await store.upsert(_gen_order('B', type_=1), options=RequestOptions(if_match_etag='"stale"'))

  run(_run())


def test_schedule_mismatch_on_missing_document():
  store = PartitionedStore()
  with pytest.raises(NotFoundError):
    run(store.schedule_concurrency_mismatch('A', 'pk'))


def test_ttl_expiry():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A', ttl=5))
    await store.advance_clock(4)
    assert store.read('A', 'pk') is not None
    await store.advance_clock(1)
    assert store.read('A', 'pk') is None

  run(_run())


def test_ttl_expires_exactly_at_tick():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A', ttl=5))
    await store.advance_clock(5)

  run(_run())
  assert store.read('A', 'pk') is None
  assert store.current_tick == 5


def test_default_ttl_and_overrides():
  store = PartitionedStore(default_time_to_live=10)

  async def _run():
    await store.upsert(_gen_order('default'))
    await store.upsert(_gen_order('forever', ttl=-1))
    await store.upsert(_gen_order('short', ttl=2))
    await store.advance_clock(3)
    assert store.read('short', 'pk') is None
    await store.advance_clock(7)

  run(_run())
  assert store.read('default', 'pk') is None
  assert store.read('forever', 'pk') is not None


def test_ttl_counts_from_last_write():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A', ttl=5))
    await store.advance_clock(4)
    await store.upsert(_gen_order('A', ttl=5))
    await store.advance_clock(4)
    assert store.read('A', 'pk') is not None

  run(_run())


def test_advance_clock_rejects_negative():
  store = PartitionedStore()
  with pytest.raises(InvalidArgumentError) as e:
    run(store.advance_clock(-1))
  assert isinstance(e.value, ValueError)
  assert store.current_tick == 0


def test_clear():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('A'))
    await store.upsert(_gen_order('B', partition_key='other'))
    await store.advance_clock(3)
    await store.clear()

  run(_run())
  assert store.items() == []
  assert store.current_tick == 0


def test_change_notifications_carry_committed_documents():
  store = PartitionedStore()
  seen = []
  seen_async = []

  async def on_change_async(documents):
    seen_async.extend(documents)

  store.subscribe(seen.extend)
  store.subscribe(on_change_async)

  async def _run():
    await store.upsert(_gen_order('A'))
    await store.create(_gen_order('B', type_=2))
    with pytest.raises(AlreadyExistsError):
      await store.create(_gen_order('B', type_=2))

  run(_run())
  assert [d['id'] for d in seen] == ['A', 'B']
  assert seen == seen_async

  store.unsubscribe(seen.extend)
  run(store.upsert(_gen_order('C', type_=3)))
  assert len(seen) == 2


def test_failing_subscriber_faults_the_write():
  store = PartitionedStore()

  def explode(documents):
    raise RuntimeError('subscriber failed')

  store.subscribe(explode)
  with pytest.raises(RuntimeError):
    run(store.upsert(_gen_order('A')))
  # The write committed before subscribers ran.
  assert store.read('A', 'pk') is not None


def test_concurrent_creates_are_serialized():
  store = PartitionedStore()

  async def _run():
    return await asyncio.gather(
        *[store.create(_gen_order('A', type_=i)) for i in range(10)], return_exceptions=True)

  results = run(_run())
  failures = [r for r in results if isinstance(r, Exception)]
  assert len(failures) == 9
  assert all(isinstance(f, AlreadyExistsError) for f in failures)


def test_concurrent_writers_all_land():
  store = PartitionedStore()

  async def _run():
    await asyncio.gather(*[store.upsert(_gen_order(f'doc{i}', type_=i)) for i in range(25)])

  run(_run())
  assert store.count('pk') == 25


def test_cancelled_writer_changes_nothing():
  store = PartitionedStore()

  async def _run():
    await store._write_region.acquire()
    task = asyncio.ensure_future(store.upsert(_gen_order('A')))
    await asyncio.sleep(0)
    task.cancel()
    store._write_region.release()
    with pytest.raises(asyncio.CancelledError):
      await task

  run(_run())
  assert store.read('A', 'pk') is None


def test_items_snapshot():
  store = PartitionedStore()
  run(store.upsert(_gen_order('A')))
  items = store.items()
  assert len(items) == 1
  assert items[0].id == 'A'
  assert items[0].partition_key == PartitionKey.of('pk')
  assert items[0].document['CustomerId'] == 'Fred'


def test_partition_keys_keep_json_types_apart():
  store = PartitionedStore(unique_key_policy=[['/name']])

  async def _run():
    await store.create({'id': 'A', 'name': 'x'}, True)
    assert store.read('A', 1) is None
    assert store.read('A', True) is not None
    await store.create({'id': 'B', 'name': 'x'}, 1)
    await store.create({'id': 'C', 'name': 'x'}, '1')

  run(_run())
  assert store.count() == 3
  assert PartitionKey.of(True) != PartitionKey.of(1)
  assert PartitionKey.of(1) == PartitionKey.of(1.0)


def test_unique_key_numbers_compare_by_value():
  store = PartitionedStore(unique_key_policy=[['/Amount']])
  run(store.create({'id': 'A', 'partitionKey': 'pk', 'Amount': 1}))
  with pytest.raises(UniqueConstraintViolationError):
    run(store.create({'id': 'B', 'partitionKey': 'pk', 'Amount': 1.0}))
  run(store.create({'id': 'C', 'partitionKey': 'pk', 'Amount': 1.5}))


@pytest.mark.parametrize('policy', [['/id'], ['/CustomerId'], '/id'])
def test_unique_key_must_be_a_list_of_paths(policy):
  with pytest.raises(BadUniqueKeyPolicyError):
    PartitionedStore(unique_key_policy=policy)


def test_unique_key_path_must_name_a_property():
  with pytest.raises(BadUniqueKeyPolicyError):
    PartitionedStore(unique_key_policy=[['/']])


def test_integral_float_ttl_is_honored():
  store = PartitionedStore()

  async def _run():
    await store.upsert(_gen_order('whole', ttl=5.0))
    await store.upsert(_gen_order('fraction', ttl=2.5))
    await store.advance_clock(5)

  run(_run())
  assert store.read('whole', 'pk') is None
  assert store.read('fraction', 'pk') is not None


def test_store_is_usable_from_successive_event_loops():
  store = PartitionedStore()

  async def _contended_writes(prefix):
    region = store._write_region
    await region.acquire()
    writers = [asyncio.ensure_future(store.upsert(_gen_order(f'{prefix}{i}', type_=i)))
               for i in range(3)]
    await asyncio.sleep(0)
    region.release()
    await asyncio.gather(*writers)

  run(_contended_writes('first'))
  run(_contended_writes('second'))
  assert store.count('pk') == 6
