'''Checks query predicates against what the service's query engine can translate.

In-memory evaluation would happily run any Python, so without this a test could pass against the
emulation and fail against the service. Predicates are rejected with the error shape the service
uses, and a few shapes are rewritten so in-memory results match the service's:

* xor (and its negation) never matches anything.
* is_null(x) becomes x == null, and is_defined(x) becomes true.
* Equality on a nullable enum compares through a sentinel, since the service treats a null enum as
  comparable where naive evaluation would dereference None.

Add an integration test against the real service for anything added here.
'''
from ..emulation_logging import debug
from ..errors import QueryCapabilityRejectedError
from .expressions import (ARRAY, ENUMERABLE, EQ, MATH, NE, NOT, OBJECT, QUERY_EXTENSIONS,
                          QUERYABLE, STRING, XOR, COALESCE, NO_VALUE, Binary, Constant, Convert,
                          ExpressionVisitor, MemberAccess, Call, constant_false, is_enum_type, walk)

_SEQUENCE_METHODS = frozenset([
    'select', 'contains', 'where', 'single', 'select_many', 'order_by', 'order_by_descending',
    'then_by', 'then_by_descending', 'count', 'sum', 'min', 'max', 'average', 'count_async',
    'sum_async', 'min_async', 'max_async', 'average_async', 'skip', 'take'
])

ALLOW_LIST = {
    STRING: frozenset([
        'concat', 'contains', 'count', 'ends_with', 'index_of', 'replace', 'reverse', 'starts_with',
        'substring', 'to_lower', 'to_upper', 'trim', 'trim_end', 'trim_start'
    ]),
    MATH: frozenset([
        'abs', 'acos', 'asin', 'atan', 'ceiling', 'cos', 'exp', 'floor', 'log', 'log10', 'pow',
        'round', 'sign', 'sin', 'sqrt', 'tan', 'truncate'
    ]),
    ARRAY: frozenset(['concat', 'contains', 'count']),
    QUERYABLE: _SEQUENCE_METHODS,
    # any is supported as a subquery but not as an aggregation, so only sequences declare it.
    ENUMERABLE: _SEQUENCE_METHODS | {'any'},
    OBJECT: frozenset(['to_string']),
}

PRIMITIVE_TYPES = (bool, int, float)


class QueryCapabilityValidator(ExpressionVisitor):

  def __init__(self, model_type=dict):
    self.model_type = model_type

  def validate(self, expression):
    '''Rejects unsupported calls anywhere in |expression|, then returns the rewritten tree.'''
    for node in walk(expression):
      if isinstance(node, Call):
        self._guard(node)
    rewritten = self.visit(expression)
    if rewritten is not expression:
      debug(f'Rewrote predicate for service compatibility: {rewritten}')
    return rewritten

  def _guard(self, node):
    allowed = ALLOW_LIST.get(node.declaring_type)
    if allowed is None:
      # Calls evaluated client-side into a primitive are fine, as long as they do not need the
      # document itself.
      receiver = node.target
      if node.return_type in PRIMITIVE_TYPES and (receiver is None or
                                                  receiver.type is not self.model_type):
        return
      raise QueryCapabilityRejectedError(
          f'Methods from {node.declaring_type} are not supported by the service')
    if node.method not in allowed:
      raise QueryCapabilityRejectedError(
          f'{node.declaring_type}.{node.method} is not supported by the service')

  def visit_Call(self, node):
    if node.declaring_type == QUERY_EXTENSIONS:
      if node.method == 'is_defined':
        # TODO: Reproduce defined/undefined semantics; every property counts as defined for now.
        return Constant(True, bool)
      if node.method == 'is_null':
        # Extension-method style calls carry the operand as the receiver.
        argument = node.arguments[0] if node.arguments else node.target
        if argument is None:
          raise QueryCapabilityRejectedError('is_null requires an operand')
        return self.visit(Binary(EQ, argument, Constant(None)))
    return self.generic_visit(node)

  def visit_Binary(self, node):
    if node.op == XOR:
      return constant_false()
    if node.op in (EQ, NE):
      node = (_coalesce_nullable_enum(node.op, node.left, node.right) or
              _coalesce_nullable_enum(node.op, node.right, node.left, swapped=True) or node)
    return self.generic_visit(node)

  def visit_Unary(self, node):
    if node.op == NOT and isinstance(node.operand, Binary) and node.operand.op == XOR:
      return constant_false()
    return self.generic_visit(node)


def _coalesce_nullable_enum(op, model_side, other_side, swapped=False):
  '''Rewrites (int?) x.E.value == (int?) y as (int?) (x.E ?? NO_VALUE).value == (int?) (y ?? NO_VALUE).

  Returns None when the operands are not that shape.
  '''
  if not (isinstance(model_side, Convert) and model_side.type is int and model_side.nullable and
          isinstance(other_side, Convert)):
    return None
  access = model_side.operand
  if not (isinstance(access, MemberAccess) and access.member == 'value' and
          access.expression is not None and is_enum_type(access.expression.type)):
    return None
  enum_type = access.expression.type
  sentinel = Constant(NO_VALUE, enum_type, nullable=True)
  model = Convert(
      MemberAccess(Binary(COALESCE, access.expression, sentinel), 'value', int, access.nullable),
      int,
      nullable=True)
  other = Convert(Binary(COALESCE, other_side.operand, sentinel), int, nullable=True)
  return Binary(op, other, model) if swapped else Binary(op, model, other)
