"""
### Populate Operation

Populating replaces a reference field with the documents it references:
it corresponds to the `$lookup` stage of the pipeline.

```
GET /api/items?users[p]=*
GET /api/items?users[p]=name;email
GET /api/items?author->company[p]=-address
```

#### Syntax

`field[p]=...` where the value is:

* `*` (or nothing): load the whole documents
* A `;`-separated list of fields to keep: `name;email`
* `+field` to add a field, `-field` to remove one: `-address`

`->` separates the fields of a nested relation: `author->company` is `author.company`.

The referenced collection comes from the schema: the relation target, lower-cased, pluralized.
An `Array` relation matches any of the ids; any other relation matches a single id.
"""

from collections import OrderedDict

from .base import ApiFeaturesHandlerBase
from ..exc import UnresolvedRelationError
from ..schema import FieldType
from ..stages import AddFields, Lookup, Match, Project


#: The variable that holds the local field value inside the lookup pipeline
LOCAL_FIELD_VARIABLE = 'localFieldValue'


class ApiFeaturesPopulate(ApiFeaturesHandlerBase):
    """ Load related documents """

    query_object_section_name = 'populate'

    def compile_stages(self):
        stages = []
        for join in self.query_object.joins:
            stages.extend(self.compile_join(join))
        return stages

    def compile_join(self, join):
        """ Compile the stages for one relation

            :type join: apifeatures.query_object.JoinExpression
            :raises UnresolvedRelationError
        """
        local_field = join.field
        collection_name = self.collection_name(join)

        # Set-membership for arrays, equality for everything else
        if self.schema.declared_type(local_field) is FieldType.ARRAY:
            correlation = '$in'
        else:
            correlation = '$eq'

        # Sub-pipeline
        pipeline = [Match({'$expr': {correlation: ['$_id', '$$' + LOCAL_FIELD_VARIABLE]}})]
        if not join.is_wildcard:
            pipeline.append(Project(self.compile_projection(join.value)))
        if self.settings.fields_to_hide:
            pipeline.append(Project(self.hidden_fields_projection()))

        return [
            # A missing relation is an empty one
            AddFields({local_field: {'$ifNull': ['$' + local_field, []]}}),
            Lookup(from_collection=collection_name,
                   as_field=local_field,
                   let={LOCAL_FIELD_VARIABLE: '$' + local_field},
                   pipeline=pipeline),
        ]

    def collection_name(self, join) -> str:
        """ Get the name of the collection the relation references """
        target = self.schema.relation_target(join.field)
        if not target:
            raise UnresolvedRelationError(self.schema.model_name, join.key)
        return target.lower() + 's'

    @staticmethod
    def compile_projection(payload: str) -> dict:
        """ Compile the projection of the related documents: 'name;+email;-address'

            Once a field is included, the excluded ones are dropped: only `_id` may be excluded then.
        """
        projection = OrderedDict()
        for token in payload.split(';'):
            token = token.strip()
            is_remove = token.startswith('-')
            if token[:1] in ('-', '+'):
                token = token[1:]
            if token:
                projection[token] = 0 if is_remove else 1

        if any(v for k, v in projection.items() if k != '_id'):
            projection = OrderedDict((k, v) for k, v in projection.items() if v or k == '_id')
        return projection
