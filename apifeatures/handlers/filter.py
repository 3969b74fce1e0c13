"""
### Filter Operation

Filtering corresponds to the `$match` stage of the pipeline.

Every query parameter that is not a control parameter, and that names a known field, is a filter:

```
GET /api/items?name=Jane&externalId[gt]=101&description[s]=blue
```

#### Syntax

* `field=value` - equality check
* `field[s]=value` - case-insensitive substring match
* `field[gt]=value`, `field[gte]=value`, `field[lt]=value`, `field[lte]=value` - comparison
* `field[ne]=value` - inequality check
* `field[in]=a;b;c`, `field[nin]=a;b;c` - any of / none of the `;`-separated values

The dot notation works as well: `externalId.gt=101`.

#### Type coercion

Query string values are strings. They are converted according to the declared type of the field:

* `Number`: an integer, or a float
* `Date`: an ISO-8601 date, or a timestamp in milliseconds
* `Boolean`: `true` is `True`, anything else is `False`

A value that cannot be converted fails the whole query with `InvalidFilterValue`.

#### Translatable fields

When translations are enabled, a translatable field is looked up in the current language,
falling back to the default language:

```
{'$or': [{'translations.it.name': 'X'}, {'translations.en.name': 'X'}]}
```
"""

import math
import re
from datetime import datetime, date, timezone

from .base import ApiFeaturesHandlerBase
from ..exc import InvalidFilterValue
from ..query_object import EqualsExpression, OperatorExpression, RegexExpression
from ..schema import FieldType
from ..stages import Match


class ApiFeaturesFilter(ApiFeaturesHandlerBase):
    """ Filter documents

        Every filter expression produces its own Match stage; they are merged later, by the reorderer.
    """

    query_object_section_name = 'filter'

    def compile_stages(self):
        return [Match(self.compile_criteria(expr))
                for expr in self.query_object.filters]

    def compile_criteria(self, expr) -> dict:
        """ Compile a single filter expression into $match criteria

            :type expr: apifeatures.query_object.QueryExpressionBase
        """
        field = expr.field

        # The condition the field should satisfy
        if isinstance(expr, RegexExpression):
            condition = regex_condition(expr.value)
        elif isinstance(expr, OperatorExpression):
            condition = {expr.operator: self.coerce(field, expr.value)}
        elif isinstance(expr, EqualsExpression):
            condition = self.coerce(field, expr.value)
        else:
            raise NotImplementedError('Unknown expression: {!r}'.format(expr))

        # Apply it to every path the field is stored at
        paths = self.query_paths(field)
        if len(paths) == 1:
            return {paths[0]: condition}
        else:
            return {'$or': [{path: condition} for path in paths]}

    def coerce(self, field: str, value):
        """ Convert the value into the declared type of the field

            Lists are converted item by item.

            :raises InvalidFilterValue
        """
        field_type = self.schema.declared_type(field)
        if isinstance(value, (list, tuple)):
            return [coerce_value(field, field_type, v) for v in value]
        return coerce_value(field, field_type, value)


def regex_condition(text: str) -> dict:
    """ Case-insensitive substring match """
    return {'$regex': re.escape(text), '$options': 'i'}


def coerce_value(field: str, field_type: FieldType, value):
    """ Convert one value into the given type

        :raises InvalidFilterValue
    """
    if field_type is FieldType.NUMBER:
        return _to_number(field, value)
    elif field_type is FieldType.DATE:
        return _to_date(field, value)
    elif field_type is FieldType.BOOLEAN:
        return value is True or value == 'true'
    else:
        return value


def _to_number(field, value):
    # Already a number
    if isinstance(value, bool):
        raise InvalidFilterValue(field, value, FieldType.NUMBER.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidFilterValue(field, value, FieldType.NUMBER.value)
        return value

    # Parse
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidFilterValue(field, value, FieldType.NUMBER.value)
    if not math.isfinite(number):
        raise InvalidFilterValue(field, value, FieldType.NUMBER.value)
    return number


def _to_date(field, value):
    # Already a date
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    # Timestamp, milliseconds
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_timestamp(field, value)
    if isinstance(value, str) and re.fullmatch(r'-?\d+', value.strip()):
        return _from_timestamp(field, int(value))

    # ISO-8601
    try:
        return datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except (AttributeError, ValueError):
        raise InvalidFilterValue(field, value, FieldType.DATE.value)


def _from_timestamp(field, ms):
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise InvalidFilterValue(field, ms, FieldType.DATE.value)
