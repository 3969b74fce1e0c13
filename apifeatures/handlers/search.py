"""
### Search Operation

Full-text-ish search over a list of string fields, ranked by relevance.

The API user gives the text; the developer decides which fields are searched, in the order of importance:

```python
ApiFeatures(Item, request.args).search('name;description')
```

```
GET /api/items?search=blue&sort=relevance
```

The documents that contain the text in any of the fields are selected (case-insensitive),
and every document gets a `relevance` score: the more important the matching field, the lower the score.
Use `sort=relevance` to get the best matches first.

The search only works on `String` fields: when any of the fields is not a string (or not known at all),
the operation is skipped.
"""

import logging
from typing import Union, Sequence

from .base import ApiFeaturesHandlerBase
from .filter import regex_condition
from ..stages import Match, AddFields, Sort

logger = logging.getLogger(__name__)


#: The name of the computed relevance field
RELEVANCE_FIELD = 'relevance'


class ApiFeaturesSearch(ApiFeaturesHandlerBase):
    """ Search for text in multiple fields """

    query_object_section_name = 'search'

    def __init__(self, schema, settings, lang):
        super(ApiFeaturesSearch, self).__init__(schema, settings, lang)

        # On input
        #: The text to search for
        self.text = None
        #: The fields to search in
        self.fields = None
        #: The direction of the relevance sort, or `None`
        self.relevance_order = None

    def input(self, query_object, fields: Union[str, Sequence[str]] = None):
        super(ApiFeaturesSearch, self).input(query_object)
        self.text = query_object.get('search')

        # Fields: a list, or a ';'-separated string
        if isinstance(fields, str):
            fields = fields.split(';')
        self.fields = [f.strip() for f in (fields or ()) if f and f.strip()]

        # Relevance sort requested?
        sort_tokens = [t.strip() for t in (query_object.get('sort') or '').split(';')]
        if '-' + RELEVANCE_FIELD in sort_tokens:
            self.relevance_order = -1
        elif RELEVANCE_FIELD in sort_tokens:
            self.relevance_order = +1
        return self

    def is_applicable(self) -> bool:
        """ Is there anything to search, and can we search it? """
        if not self.text or not self.fields:
            return False

        # Only strings can be searched
        for field in self.fields:
            if not self.schema.is_string(field):
                logger.debug('Search skipped: field `%s` of %s is not a String', field, self.schema.model_name)
                return False
        return True

    def compile_terms(self):
        """ Compile the OR terms: one per path, in the order of importance

            :return: list of (path, condition)
        """
        condition = regex_condition(self.text)
        return [(path, condition)
                for field in self.fields
                for path in self.query_paths(field)]

    def compile_relevance(self, terms) -> dict:
        """ Compile the relevance score expression

            A term contributes -(N - index) when it matches, 0 otherwise:
            the first term has the lowest (best) score.
        """
        n = len(terms)
        return {'$sum': [
            {'$cond': {
                'if': {'$regexMatch': {
                    'input': '$' + path,
                    'regex': condition['$regex'],
                    'options': condition['$options'],
                }},
                'then': -(n - index),
                'else': 0,
            }}
            for index, (path, condition) in enumerate(terms)
        ]}

    def compile_stages(self):
        if not self.is_applicable():
            return []

        terms = self.compile_terms()
        stages = [
            Match({'$or': [{path: condition} for path, condition in terms]}),
            AddFields({RELEVANCE_FIELD: self.compile_relevance(terms)}),
        ]

        if self.relevance_order is not None:
            stages.append(Sort({RELEVANCE_FIELD: self.relevance_order}))

        # Done
        return stages
