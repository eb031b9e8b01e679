from .evaluator import Evaluator, compile_predicate
from .expressions import NO_VALUE, ExpressionVisitor, walk
from .validator import ALLOW_LIST, QueryCapabilityValidator
