'''Query predicates as an explicit expression tree.

A client's query layer builds these; the validator checks and rewrites them and the evaluator runs
them over deserialized documents. Every node is immutable, so rewriting produces a new tree.

  x = parameter('x')
  predicate = lambda_(x, eq(member(x, 'CustomerId'), constant('Fred')))
'''
import enum

import attr

# Binary operators.
EQ = 'eq'
NE = 'ne'
LT = 'lt'
LE = 'le'
GT = 'gt'
GE = 'ge'
AND = 'and'
OR = 'or'
XOR = 'xor'
ADD = 'add'
SUB = 'sub'
MUL = 'mul'
DIV = 'div'
MOD = 'mod'
COALESCE = 'coalesce'

COMPARISON_OPS = (EQ, NE, LT, LE, GT, GE)
LOGICAL_OPS = (AND, OR, XOR)

# Unary operators.
NOT = 'not'
NEGATE = 'negate'

# Declaring types for calls.
STRING = 'string'
MATH = 'math'
ARRAY = 'array'
QUERYABLE = 'queryable'
ENUMERABLE = 'enumerable'
OBJECT = 'object'
# Marker functions the service's query extensions declare (is_null, is_defined).
QUERY_EXTENSIONS = 'query_extensions'


class _NoValue:
  '''Stands in for a missing nullable enum so comparisons never dereference None.'''
  value = -2**31

  def __repr__(self):
    return 'NO_VALUE'


NO_VALUE = _NoValue()


def is_enum_type(type_):
  return isinstance(type_, type) and issubclass(type_, enum.Enum)


@attr.s(frozen=True, slots=True)
class Parameter:
  _children = ()
  name = attr.ib()
  type = attr.ib(default=dict)


@attr.s(frozen=True, slots=True)
class Constant:
  _children = ()
  value = attr.ib()
  type = attr.ib(default=None)
  nullable = attr.ib(default=False)


@attr.s(frozen=True, slots=True)
class MemberAccess:
  _children = ('expression',)
  expression = attr.ib()
  member = attr.ib()
  type = attr.ib(default=None)
  nullable = attr.ib(default=False)


@attr.s(frozen=True, slots=True)
class Convert:
  '''A type conversion, e.g. widening an enum to a nullable int for comparison.'''
  _children = ('operand',)
  operand = attr.ib()
  type = attr.ib()
  nullable = attr.ib(default=False)


@attr.s(frozen=True, slots=True)
class Unary:
  _children = ('operand',)
  op = attr.ib()
  operand = attr.ib()

  @property
  def type(self):
    return bool if self.op == NOT else self.operand.type


@attr.s(frozen=True, slots=True)
class Binary:
  _children = ('left', 'right')
  op = attr.ib()
  left = attr.ib()
  right = attr.ib()

  @property
  def type(self):
    if self.op in COMPARISON_OPS or self.op in LOGICAL_OPS:
      return bool
    return self.left.type


@attr.s(frozen=True, slots=True)
class Call:
  '''A function or method call.

  |target| is the receiver for instance methods and None for static ones. |function| optionally
  supplies the Python implementation the evaluator should use; calls to the service's built-in
  functions leave it unset.
  '''
  _children = ('target', 'arguments')
  declaring_type = attr.ib()
  method = attr.ib()
  arguments = attr.ib(converter=tuple, default=())
  target = attr.ib(default=None)
  return_type = attr.ib(default=None)
  function = attr.ib(default=None, eq=False, repr=False)

  @property
  def type(self):
    return self.return_type


@attr.s(frozen=True, slots=True)
class Lambda:
  _children = ('parameters', 'body')
  parameters = attr.ib(converter=tuple)
  body = attr.ib()

  @property
  def type(self):
    return self.body.type


def children(node):
  for name in node._children:
    child = getattr(node, name)
    if isinstance(child, tuple):
      yield from child
    elif child is not None:
      yield child


def walk(node):
  '''Yields |node| and every node beneath it, parents first.'''
  pending = [node]
  while pending:
    current = pending.pop()
    yield current
    pending.extend(reversed(list(children(current))))


class ExpressionVisitor:
  '''Dispatches on node class (visit_Binary, visit_Call, ...) and rebuilds changed subtrees.'''

  def visit(self, node):
    visitor = getattr(self, f'visit_{type(node).__name__}', self.generic_visit)
    return visitor(node)

  def generic_visit(self, node):
    changes = {}
    for name in node._children:
      child = getattr(node, name)
      if child is None:
        continue
      if isinstance(child, tuple):
        visited = tuple(self.visit(c) for c in child)
        if any(a is not b for a, b in zip(visited, child)):
          changes[name] = visited
      else:
        visited = self.visit(child)
        if visited is not child:
          changes[name] = visited
    return attr.evolve(node, **changes) if changes else node


# Builders.


def parameter(name='x', type_=dict):
  return Parameter(name, type_)


def constant(value, type_=None, nullable=False):
  return Constant(value, type_ if type_ is not None else type(value), nullable)


def member(expression, name, type_=None, nullable=False):
  return MemberAccess(expression, name, type_, nullable)


def convert(operand, type_, nullable=False):
  return Convert(operand, type_, nullable)


def widened_enum(expression):
  '''How a nullable enum member appears on the model side of an equality: (int?) x.Member.value.'''
  return Convert(MemberAccess(expression, 'value', int), int, nullable=True)


def eq(left, right):
  return Binary(EQ, left, right)


def ne(left, right):
  return Binary(NE, left, right)


def and_(left, right):
  return Binary(AND, left, right)


def or_(left, right):
  return Binary(OR, left, right)


def xor(left, right):
  return Binary(XOR, left, right)


def not_(operand):
  return Unary(NOT, operand)


def lambda_(parameters, body):
  if isinstance(parameters, Parameter):
    parameters = (parameters,)
  return Lambda(parameters, body)


def call(declaring_type, method, *arguments, target=None, return_type=None, function=None):
  return Call(declaring_type, method, arguments, target, return_type, function)


def is_null(expression):
  return Call(QUERY_EXTENSIONS, 'is_null', (expression,), None, bool)


def is_defined(expression):
  return Call(QUERY_EXTENSIONS, 'is_defined', (expression,), None, bool)


def constant_false():
  return Binary(EQ, Constant(True, bool), Constant(False, bool))
