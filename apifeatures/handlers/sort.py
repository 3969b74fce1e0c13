"""
### Sort Operation

Sorting corresponds to the `$sort` stage of the pipeline.

```
GET /api/items?sort=name;-createdAt
```

#### Syntax

A `;`-separated list of field names, optionally prefixed with `-` for the descending order.
The default is ascending.

```
sort=a;-b;c  // -> {a: 1, b: -1, c: 1}
```

When there's no `sort` parameter, the documents are sorted by `default_sort_field`, newest first.
"""

from collections import OrderedDict

from .base import ApiFeaturesHandlerBase
from ..stages import Sort


class ApiFeaturesSort(ApiFeaturesHandlerBase):
    """ Sorting

        * None: sort by `default_sort_field`, descending
        * 'a;-b' - string of '[-]<field>', `;`-separated
    """

    query_object_section_name = 'sort'

    def __init__(self, schema, settings, lang):
        super(ApiFeaturesSort, self).__init__(schema, settings, lang)

        # On input
        #: OrderedDict() of a sort spec: {key: +1|-1}
        self.sort_spec = None

    def input(self, query_object):
        super(ApiFeaturesSort, self).input(query_object)
        self.sort_spec = self._input(query_object.get('sort'))
        return self

    def _input(self, spec):
        # Default
        if not spec:
            if self.settings.default_sort_field is None:
                return OrderedDict()
            return OrderedDict([(self.settings.default_sort_field, -1)])

        # Parse
        sort_spec = OrderedDict()
        for token in spec.split(';'):
            token = token.strip()
            if token.startswith('-'):
                field, direction = token[1:], -1
            else:
                field, direction = token, +1
            if field:
                sort_spec[field] = direction
        return sort_spec

    def compile_stages(self):
        if not self.sort_spec:
            return []  # short-circuit
        return [Sort(self.sort_spec)]
