'''The boundary a client adapter programs against.

Writes are coroutines; reads are plain calls. Implementations raise the errors in errors.py.
'''


class DocumentStore:

  async def create(self, document, partition_key=None, options=None) -> 'ItemResponse':
    raise NotImplementedError('create not implemented')

  async def upsert(self, document, partition_key=None, options=None) -> 'ItemResponse':
    raise NotImplementedError('upsert not implemented')

  async def replace(self, id_, document, partition_key=None, options=None) -> 'ItemResponse':
    raise NotImplementedError('replace not implemented')

  async def delete(self, id_, partition_key, options=None):
    raise NotImplementedError('delete not implemented')

  def read(self, id_, partition_key) -> 'DocumentRecord':
    raise NotImplementedError('read not implemented')

  def query(self, partition_key=None, predicate=None, model_type=None) -> list:
    raise NotImplementedError('query not implemented')

  def count(self, partition_key=None, predicate=None, model_type=None) -> int:
    raise NotImplementedError('count not implemented')

  # Test controls; the real service has no counterpart.

  async def advance_clock(self, seconds):
    raise NotImplementedError('advance_clock not implemented')

  async def clear(self):
    raise NotImplementedError('clear not implemented')
