'''This module mostly exists to establish the document keys the service itself interprets.'''

ID_KEY = 'id'
# Per-document time-to-live in seconds. Negative (or absent, with no store default) never expires.
TTL_KEY = 'ttl'

# The service does not escape these in the item URI when reading by id, so it refuses them on write.
FORBIDDEN_ID_CHARACTERS = ('/', '\\', '#', '?')

# Properties the service owns; a unique key path may not reference them.
SYSTEM_PROPERTIES = (
    ID_KEY,
    '_rid',
    '_self',
    '_etag',
    '_ts',
    '_attachments',
)

DEFAULT_PARTITION_KEY_PATH = '/partitionKey'


def path_segments(path):
  '''Splits a '/'-rooted document path ('/a/b') into its segments (['a', 'b']).'''
  return [segment for segment in path.strip().lstrip('/').split('/') if segment]
