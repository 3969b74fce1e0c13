"""
ApiFeatures compiles HTTP query parameters into a MongoDB aggregation pipeline.

The main use case is the interaction with the UI:
every time the UI needs some *filtering*, *searching*, *sorting*, *pagination*, or to load some
*related documents*, you won't have to write a single line of repetitive code!

The API user controls the result set with plain query string parameters:

```
GET /api/items?name[s]=blue&externalId[gt]=101&sort=-createdAt&fields=name;users&users[p]=name&page=2&limit=10
```

and you get a pipeline that loads one page of documents and counts all of them in one request:

```python
features = ApiFeatures(Item, request.args, lang='it')
result = features.filter().sort().limit_fields().paginate().populate().with_collection(db.items).exec()
# -> {'documents': [...], 'totalCount': 127}
```

ApiFeatures never talks to the database by itself: it only needs a description of the collection
(a SqlAlchemy model, or a SchemaDescriptor) and something with an `aggregate()` method.
"""

# Exceptions that are used here and there
from .exc import *

# Settings: configure() them once, at bootstrap time
from .settings import ApiFeaturesSettings, SettingsRegistry, configure, get_default_settings

# ApiFeatures needs some information about your documents.
# All this is handled by the following classes:
from .schema import FieldType, SchemaField, SchemaDescriptor, DictSchema, ModelSchema

# Pipeline stages
from .stages import Stage, Match, Sort, Project, Skip, Limit, AddFields, Lookup, Count, Facet, RawStage

# The heart of ApiFeatures are the handlers:
# that's where your query parameters are converted to actual pipeline stages!
from . import handlers

# ApiFeatures is the man that classifies your query parameters and applies the handlers
from .query import ApiFeatures
from .pipeline import CompiledPipeline

# SqlAlchemy declarative mixin that defines .api_features() on a model
# That's just for your convenience.
from .sa import ApiFeaturesBase

# Helpers
# Query string and cookie parsing, language resolution
from .querystring import parse_query_string, get_cookie, resolve_language
# Pipeline executor that is able to load and count the documents at the same time
from .util import CountingPipeline
