""" The Query Object: query parameters, classified

The raw query map is what a web framework gives you after decoding the query string:

    ?name=Jane&externalId[gt]=101&description[s]=blue&users[p]=name&sort=-createdAt

becomes

    {'name': 'Jane',
     'externalId': {'gt': '101'},
     'description': {'s': 'blue'},
     'users': {'p': 'name'},
     'sort': '-createdAt'}

`QueryObjectParser` reads such a map and produces a `QueryObject`:

* Control parameters (`search`, `page`, `sort`, `limit`, `skip`, `fields`, `populate`, `lang`) are kept aside
* Join markers (`field[p]=...`) become `JoinExpression`s
* Regex markers (`field[s]=...`) become `RegexExpression`s
* Operator-suffixed keys (`field[gt]=...`, `field.gt=...`) become `OperatorExpression`s
* Everything else becomes an `EqualsExpression`

Nested objects are flattened into dot-notation: `{variant: {color: 'red'}}` is `variant.color`.
Fields that are unknown to the schema are dropped silently.
"""

import logging
from typing import Mapping, List, Optional

from .exc import InvalidQueryError
from .schema import SchemaDescriptor

logger = logging.getLogger(__name__)


#: Query parameters that are never filters: they control other operations
CONTROL_KEYS = frozenset(('search', 'page', 'sort', 'limit', 'skip', 'fields', 'populate', 'lang'))

#: Control parameters that must be strings
STRING_CONTROL_KEYS = frozenset(('search', 'sort', 'fields', 'lang'))

#: Operator suffixes: {suffix: operator}
OPERATORS = {
    'gte': '$gte',
    'gt': '$gt',
    'lte': '$lte',
    'lt': '$lt',
    'ne': '$ne',
    'in': '$in',
    'nin': '$nin',
}

#: Operators whose operand is a list of values, `;`-separated
LIST_OPERATORS = frozenset(('$in', '$nin'))

#: Marker attribute: case-insensitive substring match
REGEX_MARKER = 's'

#: Marker attribute: populate a relation
JOIN_MARKER = 'p'

#: Path separator for nested joins: `author->company`
JOIN_PATH_SEPARATOR = '->'


# region Expressions

class QueryExpressionBase:
    """ An expression from the Query Object """

    __slots__ = ('field', 'value')

    def __init__(self, field: str, value):
        #: Field path, dot-notation
        self.field = field
        #: The value, as given
        self.value = value

    def __eq__(self, other):
        return type(self) is type(other) and \
               all(getattr(self, a) == getattr(other, a) for a in self._attrs())

    def _attrs(self):
        return [a for cls in reversed(type(self).__mro__) for a in cls.__dict__.get('__slots__', ())]

    __hash__ = None

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__,
                               ', '.join('{}={!r}'.format(a, getattr(self, a)) for a in self._attrs()))


class EqualsExpression(QueryExpressionBase):
    """ Equality filter: `field=value` """
    __slots__ = ()


class OperatorExpression(QueryExpressionBase):
    """ Operator filter: `field[gt]=value`, `field[in]=a;b`

        For `$in` and `$nin`, the value is a list.
    """

    __slots__ = ('operator',)

    def __init__(self, field: str, operator: str, value):
        super(OperatorExpression, self).__init__(field, value)
        #: The operator: '$gt', '$in', etc
        self.operator = operator


class RegexExpression(QueryExpressionBase):
    """ Case-insensitive substring filter: `field[s]=text` """
    __slots__ = ()


class JoinExpression(QueryExpressionBase):
    """ Populate a relation: `field[p]=*`, `field[p]=name;-email`

        `value` is the `;`-separated list of fields to keep, or '*' for all of them.
    """

    __slots__ = ('key',)

    def __init__(self, key: str, value: str):
        super(JoinExpression, self).__init__(key.replace(JOIN_PATH_SEPARATOR, '.'), value)
        #: The key as given in the query (possibly, with '->')
        self.key = key

    @property
    def is_wildcard(self) -> bool:
        return self.value == '*'

# endregion


class QueryObject:
    """ Classified query parameters """

    __slots__ = ('control', 'filters', 'joins')

    def __init__(self, control: Mapping = None, filters: List[QueryExpressionBase] = None, joins: List[JoinExpression] = None):
        #: Control parameters: {name: value}
        self.control = dict(control or {})
        #: Filter expressions
        self.filters = list(filters or [])
        #: Join expressions
        self.joins = list(joins or [])

    def get(self, name: str, default=None):
        """ Get a control parameter """
        return self.control.get(name, default)

    def __repr__(self):
        return 'QueryObject(control={!r}, filters={!r}, joins={!r})'.format(self.control, self.filters, self.joins)


class QueryObjectParser:
    """ Classify a raw query map into a QueryObject

        :param schema: The schema to validate field names against
    """

    def __init__(self, schema: SchemaDescriptor):
        self.schema = schema

    def parse(self, query: Optional[Mapping]) -> QueryObject:
        """ Parse a raw query map

            :raises InvalidQueryError: malformed control parameter
        """
        qo = QueryObject()
        if not query:
            return qo

        for key, value in query.items():
            # Control keys
            if key in CONTROL_KEYS:
                qo.control[key] = self._input_control(key, value)
                continue

            # Flatten everything else
            for path, leaf in self.flatten(key, value):
                expr = self._classify(path, leaf)
                if expr is None:
                    continue
                elif isinstance(expr, JoinExpression):
                    qo.joins.append(expr)
                else:
                    qo.filters.append(expr)

        # Done
        return qo

    @staticmethod
    def flatten(key: str, value):
        """ Unpack nested objects into dot-notation paths

            Objects that carry a marker attribute (`s`, `p`) as their first key are kept whole.
            Empty objects are dropped.

            :return: Iterable of (path, value)
        """
        if isinstance(value, Mapping) and not value:
            return
        if isinstance(value, Mapping) and next(iter(value)) not in (REGEX_MARKER, JOIN_MARKER):
            for k, v in value.items():
                yield from QueryObjectParser.flatten('{}.{}'.format(key, k), v)
        else:
            yield key, value

    def _input_control(self, key: str, value):
        # Validate
        if key in STRING_CONTROL_KEYS and value is not None and not isinstance(value, str):
            raise InvalidQueryError('`{}` must be a string; {} provided'.format(key, type(value).__name__))
        if isinstance(value, (Mapping, list, tuple)):
            raise InvalidQueryError('`{}` must be a scalar; {} provided'.format(key, type(value).__name__))
        return value

    def _classify(self, path: str, value) -> Optional[QueryExpressionBase]:
        """ Turn one flattened key into an expression, or drop it """
        # Flat marker keys: `name.s`, `users.p`
        field, _, suffix = path.rpartition('.')
        if field and suffix in (REGEX_MARKER, JOIN_MARKER) and not isinstance(value, Mapping):
            path, value = field, {suffix: value}

        is_marked = isinstance(value, Mapping)

        # Join marker
        if is_marked and JOIN_MARKER in value:
            # Only the first segment of a nested join is validated
            if not self._known(path.split(JOIN_PATH_SEPARATOR)[0]):
                return None
            payload = value[JOIN_MARKER]
            if isinstance(payload, (list, tuple)):
                payload = ';'.join(payload)
            return JoinExpression(path, payload or '*')

        # Operator suffix
        field, _, suffix = path.rpartition('.')
        operator = OPERATORS.get(suffix) if field else None
        if operator is not None:
            field = field.replace(JOIN_PATH_SEPARATOR, '.')
            if not self._known(field):
                return None
            if is_marked:
                raise InvalidQueryError('Operator `{}` on `{}` expects a value, not an object'.format(suffix, field))
            if operator in LIST_OPERATORS:
                value = self._split_list(value)
            return OperatorExpression(field, operator, value)

        # Plain field
        field = path.replace(JOIN_PATH_SEPARATOR, '.')
        if not self._known(field):
            return None

        # Regex marker
        if is_marked:
            if REGEX_MARKER not in value:
                raise InvalidQueryError('`{}` expects a value, or an object with `{}` or `{}`'.format(
                    field, REGEX_MARKER, JOIN_MARKER))
            text = value[REGEX_MARKER]
            if not isinstance(text, str):
                raise InvalidQueryError('`{}[{}]` must be a string'.format(field, REGEX_MARKER))
            return RegexExpression(field, text)

        return EqualsExpression(field, value)

    def _known(self, field: str) -> bool:
        if self.schema.has_field(field):
            return True
        logger.debug('Dropped unknown field `%s` of %s', field, self.schema.model_name)
        return False

    @staticmethod
    def _split_list(value) -> list:
        if isinstance(value, (list, tuple)):
            return list(value)
        return str(value).split(';')
