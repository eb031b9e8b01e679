'''Wires a configured store from a config dict, command-line args and overrides.

  container = arg_container(overrides={'unique_keys': [['/CustomerId', '/ItemId', '/Type']]})
  store = container.store()
'''
from argparse import ArgumentParser

from dependency_injector import containers, providers

from . import emulation_logging
from .emulation_logging import info
from .partitioned_store import PartitionedStore
from .query.validator import QueryCapabilityValidator
from .standard_keys import DEFAULT_PARTITION_KEY_PATH
from .unique_keys import UniqueKeyPolicy
from .utils import cached_fn


def _dynamic_container(config: providers.Configuration):
  out = containers.DynamicContainer()
  out.config = config
  out.unique_key_policy = providers.Callable(UniqueKeyPolicy.from_paths, config.unique_keys)
  # Note that out.store() builds on first call, which is when a bad unique key policy raises.
  out.store = providers.ThreadSafeSingleton(
      PartitionedStore,
      partition_key_path=config.partition_key_path,
      unique_key_policy=out.unique_key_policy,
      default_time_to_live=config.default_time_to_live)
  out.validator = providers.Factory(QueryCapabilityValidator, model_type=config.model_type)
  return out


def arg_container(*, overrides=None, test=False, args=None):
  config = dict(_default_config())
  parser = ArgumentParser()
  parser.add_argument(
      '--verbosity',
      type=str,
      nargs='?',
      default=config['verbosity'],
      choices=['info', 'debug', 'warning', 'error'])
  parser.add_argument('--quiet', action='store_true', dest='quiet')
  parser.add_argument(
      '--log_to', type=str, default=config['log_to'], choices=['color', 'stdout', 'file'])
  parser.add_argument('--log_file', type=str, default=config['log_file'])

  parsed, _ = parser.parse_known_args(args)
  config['verbosity'] = parsed.verbosity
  config['quiet'] = parsed.quiet
  config['log_to'] = parsed.log_to
  config['log_file'] = parsed.log_file
  if test:
    config['mode'] = 'test'
  _update_config_for_mode(config)
  # Apply args provided directly to function last to overwrite anything else.
  config.update(overrides or {})
  _apply_logging_config(config)
  provider_config = providers.Configuration('config')
  provider_config.from_dict(config)
  info(f'Configuration is: {config}')
  return _dynamic_container(provider_config)


def _apply_logging_config(config):
  if config['log_to'] == 'file':
    emulation_logging.send_logs_to_file(config['log_file'])
  elif config['log_to'] == 'stdout':
    emulation_logging.send_logs_to_stdout()
  else:
    emulation_logging.color_logs()
  emulation_logging.set_verbosity(config['verbosity'])
  if config['quiet']:
    emulation_logging.send_logs_to_nowhere()
  else:
    emulation_logging.send_logs_to_somewhere()


def _update_config_for_mode(config):
  mode = config['mode']  # local, test
  if mode == 'test':
    config['verbosity'] = 'debug'


@cached_fn
def _default_config():
  # Note: These are clustered by relatedness to make configuration issues easier to spot when this
  # is printed at startup.
  return {
      'mode': 'local',
      'verbosity': 'info',
      'quiet': False,
      'log_to': 'color',  # color, stdout, file
      'log_file': 'emulation.log',  # Relative to the log dir.
      'partition_key_path': DEFAULT_PARTITION_KEY_PATH,
      'unique_keys': (),
      'default_time_to_live': -1,
      'model_type': dict,
  }
