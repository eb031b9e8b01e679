'''Evaluates expression trees over deserialized documents.

This is a plain evaluator; it knows nothing about what the service supports. Run predicates through
QueryCapabilityValidator first.
'''
import enum
import math
import operator

from ..errors import QueryEvaluationError
from .expressions import (ADD, AND, ARRAY, COALESCE, DIV, ENUMERABLE, EQ, GE, GT, LE, LT, MATH, MOD,
                          MUL, NE, NEGATE, NO_VALUE, NOT, OBJECT, OR, QUERY_EXTENSIONS, QUERYABLE,
                          STRING, SUB, XOR, is_enum_type)

_ORDERING = {LT: operator.lt, LE: operator.le, GT: operator.gt, GE: operator.ge}


def _int_or_float(value):
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def _divide(a, b):
  if isinstance(a, int) and isinstance(b, int):
    return int(a / b)  # Truncates toward zero.
  return a / b


def _modulo(a, b):
  result = math.fmod(a, b)
  return int(result) if isinstance(a, int) and isinstance(b, int) else result


_ARITHMETIC = {ADD: operator.add, SUB: operator.sub, MUL: operator.mul, DIV: _divide, MOD: _modulo}


class OrderedSequence(list):
  '''A sorted list that remembers its sort keys so then_by can refine the ordering.'''

  def __init__(self, source, keys):
    self.source = list(source)
    self.keys = keys
    items = self.source
    # Sorts are stable, so applying the least significant key first gives a lexicographic order.
    for selector, descending in reversed(keys):
      items = sorted(items, key=selector, reverse=descending)
    super().__init__(items)


def _order_by(source, selector, descending=False):
  return OrderedSequence(source, [(selector, descending)])


def _then_by(source, selector, descending=False):
  if not isinstance(source, OrderedSequence):
    raise QueryEvaluationError('then_by must follow order_by')
  return OrderedSequence(source.source, source.keys + [(selector, descending)])


def _count(source, predicate=None):
  return sum(1 for item in source if predicate is None or predicate(item))


def _projected(source, selector):
  return [selector(item) for item in source] if selector is not None else list(source)


def _sum(source, selector=None):
  return sum(v for v in _projected(source, selector) if v is not None)


def _min(source, selector=None):
  values = _projected(source, selector)
  if not values:
    raise QueryEvaluationError('Sequence contains no elements')
  return min(values)


def _max(source, selector=None):
  values = _projected(source, selector)
  if not values:
    raise QueryEvaluationError('Sequence contains no elements')
  return max(values)


def _average(source, selector=None):
  values = [v for v in _projected(source, selector) if v is not None]
  if not values:
    raise QueryEvaluationError('Sequence contains no elements')
  return sum(values) / len(values)


def _single(source, predicate=None):
  matches = [item for item in source if predicate is None or predicate(item)]
  if len(matches) != 1:
    raise QueryEvaluationError(f'Sequence contains {len(matches)} matching elements; expected 1')
  return matches[0]


def _any(source, predicate=None):
  return any(predicate is None or predicate(item) for item in source)


def _sign(value):
  return (value > 0) - (value < 0)


def _log(value, base=None):
  return math.log(value) if base is None else math.log(value, base)


def _substring(value, start, length=None):
  return value[start:] if length is None else value[start:start + length]


def _trim(value, chars=None):
  return value.strip(chars)


_SEQUENCE_FUNCTIONS = {
    'select': lambda source, selector: [selector(item) for item in source],
    'where': lambda source, predicate: [item for item in source if predicate(item)],
    'select_many': lambda source, selector: [v for item in source for v in selector(item)],
    'contains': lambda source, value: value in source,
    'order_by': _order_by,
    'order_by_descending': lambda source, selector: _order_by(source, selector, True),
    'then_by': _then_by,
    'then_by_descending': lambda source, selector: _then_by(source, selector, True),
    'count': _count,
    'sum': _sum,
    'min': _min,
    'max': _max,
    'average': _average,
    'single': _single,
    'skip': lambda source, n: list(source)[n:],
    'take': lambda source, n: list(source)[:n],
}
for _name in ('count', 'sum', 'min', 'max', 'average'):
  _SEQUENCE_FUNCTIONS[f'{_name}_async'] = _SEQUENCE_FUNCTIONS[_name]

BUILTINS = {
    STRING: {
        'concat': lambda *parts: ''.join('' if p is None else str(p) for p in parts),
        'contains': lambda value, part: part in value,
        'count': len,
        'ends_with': lambda value, suffix: value.endswith(suffix),
        'index_of': lambda value, part: value.find(part),
        'replace': lambda value, old, new: value.replace(old, new),
        'reverse': lambda value: value[::-1],
        'starts_with': lambda value, prefix: value.startswith(prefix),
        'substring': _substring,
        'to_lower': str.lower,
        'to_upper': str.upper,
        'trim': _trim,
        'trim_end': lambda value, chars=None: value.rstrip(chars),
        'trim_start': lambda value, chars=None: value.lstrip(chars),
    },
    MATH: {
        'abs': abs,
        'acos': math.acos,
        'asin': math.asin,
        'atan': math.atan,
        'ceiling': math.ceil,
        'cos': math.cos,
        'exp': math.exp,
        'floor': math.floor,
        'log': _log,
        'log10': math.log10,
        'pow': math.pow,
        'round': round,  # Banker's rounding, as the service does.
        'sign': _sign,
        'sin': math.sin,
        'sqrt': math.sqrt,
        'tan': math.tan,
        'truncate': math.trunc,
    },
    ARRAY: {
        'concat': lambda first, second: list(first) + list(second),
        'contains': lambda values, value: value in values,
        'count': len,
    },
    QUERYABLE: _SEQUENCE_FUNCTIONS,
    ENUMERABLE: dict(_SEQUENCE_FUNCTIONS, any=_any),
    OBJECT: {
        'to_string': str,
    },
    QUERY_EXTENSIONS: {
        'is_null': lambda value: value is None,
        'is_defined': lambda value: True,
    },
}


class Evaluator:

  def __init__(self, scope=None):
    self.scope = scope or {}

  def evaluate(self, node):
    method = getattr(self, f'_evaluate_{type(node).__name__}', None)
    if method is None:
      raise QueryEvaluationError(f'Cannot evaluate {type(node).__name__}')
    return method(node)

  def _evaluate_Parameter(self, node):
    try:
      return self.scope[node.name]
    except KeyError:
      raise QueryEvaluationError(f'Unbound parameter {node.name}') from None

  def _evaluate_Constant(self, node):
    return node.value

  def _evaluate_MemberAccess(self, node):
    if node.expression is None:
      raise QueryEvaluationError(f'Static member {node.member} cannot be evaluated')
    target = self.evaluate(node.expression)
    if target is None:
      raise QueryEvaluationError(f"Cannot read '{node.member}' of null")
    if isinstance(target, dict):
      value = target.get(node.member)
    else:
      try:
        value = getattr(target, node.member)
      except AttributeError:
        raise QueryEvaluationError(
            f'{type(target).__name__} has no member {node.member}') from None
    return _coerce(value, node.type)

  def _evaluate_Convert(self, node):
    value = self.evaluate(node.operand)
    if value is None:
      if node.nullable:
        return None
      raise QueryEvaluationError(f'Cannot convert null to {node.type}')
    if value is NO_VALUE:
      return NO_VALUE.value if node.type in (int, float) else NO_VALUE
    if is_enum_type(node.type):
      return _coerce(value, node.type)
    if isinstance(value, enum.Enum):
      value = value.value
    if node.type in (int, float, str, bool):
      return node.type(value)
    return value

  def _evaluate_Unary(self, node):
    value = self.evaluate(node.operand)
    if node.op == NOT:
      return not value
    if node.op == NEGATE:
      return None if value is None else -value
    raise QueryEvaluationError(f'Unknown unary operator {node.op}')

  def _evaluate_Binary(self, node):
    op = node.op
    if op == AND:
      return bool(self.evaluate(node.left)) and bool(self.evaluate(node.right))
    if op == OR:
      return bool(self.evaluate(node.left)) or bool(self.evaluate(node.right))
    left = self.evaluate(node.left)
    if op == COALESCE:
      return left if left is not None else self.evaluate(node.right)
    right = self.evaluate(node.right)
    if op == XOR:
      return bool(left) != bool(right)
    if op == EQ:
      return left == right
    if op == NE:
      return left != right
    if op in _ORDERING:
      if left is None or right is None:
        return False
      try:
        return _ORDERING[op](left, right)
      except TypeError as e:
        raise QueryEvaluationError(str(e)) from e
    if op in _ARITHMETIC:
      if left is None or right is None:
        return None
      if op == ADD and not (_int_or_float(left) and _int_or_float(right)):
        return f'{left}{right}'
      try:
        return _ARITHMETIC[op](left, right)
      except (TypeError, ZeroDivisionError, ValueError) as e:
        raise QueryEvaluationError(str(e)) from e
    raise QueryEvaluationError(f'Unknown binary operator {op}')

  def _evaluate_Call(self, node):
    function = node.function
    if function is None:
      function = BUILTINS.get(node.declaring_type, {}).get(node.method)
    if function is None:
      raise QueryEvaluationError(f'No implementation for {node.declaring_type}.{node.method}')
    arguments = [self.evaluate(argument) for argument in node.arguments]
    if node.target is not None:
      target = self.evaluate(node.target)
      if target is None:
        raise QueryEvaluationError(f"Cannot call '{node.method}' on null")
      arguments.insert(0, target)
    return function(*arguments)

  def _evaluate_Lambda(self, node):

    def invoke(*values):
      if len(values) != len(node.parameters):
        raise QueryEvaluationError(
            f'Lambda takes {len(node.parameters)} arguments, got {len(values)}')
      scope = dict(self.scope)
      scope.update((p.name, v) for p, v in zip(node.parameters, values))
      return Evaluator(scope).evaluate(node.body)

    return invoke


def _coerce(value, type_):
  '''Documents hold enums as their raw JSON value; typed members see the enum itself.'''
  if value is None or value is NO_VALUE or not is_enum_type(type_) or isinstance(value, type_):
    return value
  try:
    return type_(value)
  except ValueError as e:
    raise QueryEvaluationError(str(e)) from e


def compile_predicate(predicate):
  '''Turns a single-parameter Lambda into a Python callable over documents.'''
  function = Evaluator().evaluate(predicate)
  return lambda document: bool(function(document))
