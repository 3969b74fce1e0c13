"""
### Pagination Operation

Pagination corresponds to the `$skip` and `$limit` stages of the pipeline.

```
GET /api/items?page=2&limit=10
```

* `limit`: the page size; `default_limit` when not given
* `page`: the page number, starting with 1
* `skip`: skip this many documents; overrides `page`

`limit=-1` (or any negative value) disables pagination: all documents are returned.
"""

import math

from .base import ApiFeaturesHandlerBase
from ..stages import Skip, Limit


class ApiFeaturesLimit(ApiFeaturesHandlerBase):
    """ Pagination: skip and limit """

    query_object_section_name = 'limit'

    def __init__(self, schema, settings, lang):
        super(ApiFeaturesLimit, self).__init__(schema, settings, lang)

        # On input
        #: Is pagination disabled?
        self.disabled = False
        #: Page size
        self.limit = None
        #: The number of documents to skip
        self.skip = None

    def input(self, query_object):
        super(ApiFeaturesLimit, self).input(query_object)

        # Escape hatch: negative limit
        limit = _to_int(query_object.get('limit'))
        if limit is not None and limit <= -1:
            self.disabled = True
            return self

        # Page size, page number
        self.limit = limit or self.settings.default_limit
        page = _to_int(query_object.get('page')) or 1
        page = max(page, 1)

        # Skip: explicit, or from the page number
        skip = _to_int(query_object.get('skip'))
        if skip is not None and skip >= 0:
            self.skip = skip
        else:
            self.skip = self.limit * (page - 1)
        return self

    def compile_stages(self):
        if self.disabled:
            return []
        return [Skip(self.skip), Limit(self.limit)]


def _to_int(value):
    """ Convert a query parameter into an integer, or `None` when it's not a number """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None

    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if math.isfinite(number) else None
