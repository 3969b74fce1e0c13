"""
### Project Operation

Projection corresponds to the `$project` stage of the pipeline:
it lets the API user choose the fields to load.

```
GET /api/users?fields=name;email
GET /api/users?fields=-description
```

#### Syntax

A `;`-separated list of field names, optionally prefixed with `-` to exclude the field.

* Inclusion mode: `fields=name;email` - only these fields are returned (and `_id`)
* Exclusion mode: `fields=-description` - all fields except these are returned

Once a field is included, the excluded ones are dropped: `fields=name;-email` is `fields=name`.
Only `_id` can be excluded in the inclusion mode.

A translatable field brings its per-language values along: `translations.<lang>.<field>`.

#### Hidden fields

The `fields_to_hide` setting lists the fields that are never returned, whatever the API user asks for.
"""

from collections import OrderedDict

from .base import ApiFeaturesHandlerBase
from ..stages import Project


class ApiFeaturesProject(ApiFeaturesHandlerBase):
    """ Field inclusion and exclusion """

    query_object_section_name = 'fields'

    def __init__(self, schema, settings, lang):
        super(ApiFeaturesProject, self).__init__(schema, settings, lang)

        # On input
        #: The requested projection: {field: 1|0}
        self.projection = None

    def input(self, query_object):
        super(ApiFeaturesProject, self).input(query_object)
        self.projection = self._input(query_object.get('fields'))
        return self

    def _input(self, spec) -> OrderedDict:
        projection = OrderedDict()
        for token in (spec or '').split(';'):
            token = token.strip()
            is_remove = token.startswith('-')
            field = token[1:] if is_remove else token
            if not field:
                continue

            value = 0 if is_remove else 1
            projection[field] = value

            # Translatable fields: project the translations as well
            if self.is_translatable(field):
                projection[self.translated_path(field)] = value
                if self.lang != self.settings.default_lang:
                    projection[self.translated_path(field, self.settings.default_lang)] = value
        return projection

    def is_inclusion_mode(self) -> bool:
        """ Is the requested projection in the inclusion mode?

            `_id` is special: it can be excluded in the inclusion mode.
        """
        return any(v for k, v in self.projection.items() if k != '_id')

    def compile_projection(self) -> dict:
        """ Compile the final projection, with the hidden fields enforced """
        projection = OrderedDict(self.projection)
        hidden = self.settings.fields_to_hide

        # Inclusion can't be mixed with exclusion; only `_id` may be excluded
        if self.is_inclusion_mode():
            projection = OrderedDict((k, v) for k, v in projection.items() if v or k == '_id')

        if hidden and self.is_inclusion_mode():
            # Inclusion already hides everything that is not included
            for name in hidden:
                projection.pop(name, None)
            # Only hidden fields were requested
            if not any(v for k, v in projection.items() if k != '_id'):
                projection = OrderedDict(self.hidden_fields_projection())
        elif hidden:
            projection.update(self.hidden_fields_projection())

        return projection

    def compile_stages(self):
        projection = self.compile_projection()
        if not projection:
            return []  # short-circuit
        return [Project(projection)]
