'''In-memory emulation of a partitioned document database's write path and query rules.'''
from .document_record import DocumentRecord, ItemResponse, RequestOptions, StoredItem
from .errors import (AlreadyExistsError, BadUniqueKeyPolicyError, ConcurrencyMismatchError,
                     EmulatorError, InvalidArgumentError, InvalidIdError, NotFoundError,
                     PreconditionRequiredError, QueryCapabilityRejectedError,
                     UniqueConstraintViolationError)
from .partition_key import PartitionKey
from .partitioned_store import PartitionedStore
from .unique_keys import UniqueKey, UniqueKeyPolicy
