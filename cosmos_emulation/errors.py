'''Errors raised by the emulation.

Each error subclasses the real client's CosmosHttpResponseError (and the matching specialised
subclass where the client has one) so handlers written against the service catch these too.
'''
from http import HTTPStatus

from azure.cosmos.exceptions import (CosmosAccessConditionFailedError, CosmosHttpResponseError,
                                     CosmosResourceExistsError, CosmosResourceNotFoundError)


class EmulatorError(CosmosHttpResponseError):
  status = HTTPStatus.BAD_REQUEST
  default_message = 'The request could not be processed.'

  def __init__(self, message=None):
    message = message or self.default_message
    super().__init__(status_code=int(self.status), message=message)
    self.reason = message
    # The emulation never talks to the service, so these mirror an empty diagnostic context.
    self.sub_status = 0
    self.activity_id = ''
    self.request_charge = 0


class InvalidIdError(EmulatorError):
  default_message = ("The service does not escape the following characters: '/' '\\', '#', '?' "
                     'in the URI when retrieving an item by id. Encode the id to remove them.')


class BadUniqueKeyPolicyError(EmulatorError):
  default_message = ("The unique key path cannot contain system properties. 'id' is a system "
                     'property.')


class QueryCapabilityRejectedError(EmulatorError):
  default_message = 'The query uses a method that is not supported by the service.'


class InvalidArgumentError(EmulatorError, ValueError):
  default_message = 'Invalid argument.'


class NotFoundError(EmulatorError, CosmosResourceNotFoundError):
  status = HTTPStatus.NOT_FOUND
  default_message = 'Entity with the specified id does not exist in the system.'


class AlreadyExistsError(EmulatorError, CosmosResourceExistsError):
  status = HTTPStatus.CONFLICT
  default_message = 'Entity with the specified id already exists in the system.'


class UniqueConstraintViolationError(EmulatorError, CosmosResourceExistsError):
  status = HTTPStatus.CONFLICT
  default_message = 'Unique index constraint violation.'


class ConcurrencyMismatchError(EmulatorError, CosmosAccessConditionFailedError):
  status = HTTPStatus.PRECONDITION_FAILED
  default_message = 'The operation specified an etag that is different from the version on the server.'


class PreconditionRequiredError(EmulatorError):
  status = HTTPStatus.PRECONDITION_REQUIRED
  default_message = 'An etag must be provided as a concurrency mismatch is queued for this item.'


class QueryEvaluationError(Exception):
  '''Raised by the in-memory evaluator; this is a local failure, not a service response.'''
