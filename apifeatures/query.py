import json
import logging
from typing import Union, Mapping, Sequence

from . import handlers
from .pipeline import CompiledPipeline, counting_stages, COUNT_FIELD
from .query_object import QueryObjectParser
from .reorder import reorder_stages
from .schema import SchemaDescriptor, schema_for
from .settings import ApiFeaturesSettings, get_default_settings
from .stages import Stage
from .util import CountingPipeline

logger = logging.getLogger(__name__)


class ApiFeatures:
    """ Compile query parameters into an aggregation pipeline

        An ApiFeatures object is created for every request, and is discarded afterwards.

        Example:

            ```python
            features = ApiFeatures(Item, request.args, lang='it')
            result = (features
                      .filter()
                      .search('name;description')
                      .sort()
                      .limit_fields()
                      .paginate()
                      .populate()
                      .with_collection(db.items)
                      .exec())
            # -> {'documents': [...], 'totalCount': 127}
            ```

        Every operation appends its stages to the pipeline; the order of calls does not matter:
        end() puts the stages into the canonical order.
    """

    # The class to classify the query parameters with
    _QUERY_OBJECT_PARSER_CLS = QueryObjectParser

    def __init__(self,
                 schema: Union[SchemaDescriptor, type, Mapping],
                 query: Mapping = None,
                 lang: str = None,
                 settings: ApiFeaturesSettings = None):
        """ Init a compiler

        :param schema: The schema of the collection: a SchemaDescriptor, a SqlAlchemy model, or a {path: type} mapping.
        :param query: The raw query map: decoded query string parameters
        :param lang: The current language.
            When not given, the `lang` query parameter is used; then, the default language.
        :param settings: Settings for this query. When not given, the process-wide defaults are used.
        :raises InvalidQueryError: a malformed control parameter
        """
        # Settings
        self._settings = settings if settings is not None else get_default_settings()

        # Schema
        self._schema = schema_for(schema)

        # Query Object
        self._raw_query = dict(query or {})
        self._query_object = self._QUERY_OBJECT_PARSER_CLS(self._schema).parse(self._raw_query)

        # Language
        self._lang = self._init_lang(lang)

        # Pipeline stages, in the order they were added
        self._stages = []

        # The compiled pipeline ; `None` until end() is called
        self._compiled = None

        # The collection to run the pipeline against
        self._collection = None

        # Get ready: operation handlers
        self._init_query_object_handlers()

        if self._settings.log_query:
            logger.info('ApiFeatures(%s): query=%r lang=%s', self._schema.model_name, self._raw_query, self._lang)

    @property
    def lang(self) -> str:
        return self._lang

    @property
    def settings(self) -> ApiFeaturesSettings:
        return self._settings

    @property
    def query_object(self):
        """ The classified query parameters

            :rtype: apifeatures.query_object.QueryObject
        """
        return self._query_object

    @property
    def stages(self) -> list:
        """ The stages added so far, in the order they were added """
        return list(self._stages)

    # region Operations

    def filter(self) -> 'ApiFeatures':
        """ Filter documents by the query parameters: `?name=Jane&externalId[gt]=101`

            :raises InvalidFilterValue: a value could not be converted to the type of its field
        """
        return self._apply(self.handler_filter.input(self._query_object))

    def search(self, fields: Union[str, Sequence[str]]) -> 'ApiFeatures':
        """ Search for the `?search=` text in the given fields

            :param fields: The String fields to search in, in the order of importance: a list, or a ';'-separated string
        """
        return self._apply(self.handler_search.input(self._query_object, fields))

    def sort(self) -> 'ApiFeatures':
        """ Sort documents: `?sort=name;-createdAt` """
        return self._apply(self.handler_sort.input(self._query_object))

    def limit_fields(self) -> 'ApiFeatures':
        """ Choose the fields to return: `?fields=name;email` """
        return self._apply(self.handler_project.input(self._query_object))

    def paginate(self) -> 'ApiFeatures':
        """ Paginate: `?page=2&limit=10` """
        return self._apply(self.handler_limit.input(self._query_object))

    def populate(self) -> 'ApiFeatures':
        """ Load related documents: `?users[p]=name;email`

            :raises UnresolvedRelationError: a relation has no target in the schema
        """
        return self._apply(self.handler_populate.input(self._query_object))

    def add_stage(self, stage: Union[Stage, Mapping]) -> 'ApiFeatures':
        """ Add a custom stage

            :param stage: A Stage, or a stage document: {'$unwind': '$users'}
        """
        self._raise_if_compiled()
        self._stages.append(Stage.from_mongo(stage))
        return self

    def _apply(self, handler):
        """ Compile the stages of an operation and add them to the pipeline """
        self._raise_if_compiled()
        self._stages.extend(handler.compile_stages())
        return self

    # endregion

    def end(self) -> CompiledPipeline:
        """ Get the resulting pipeline, in the canonical order

            Once compiled, no operations can be added anymore.
        """
        if self._compiled is None:
            self._compiled = CompiledPipeline(reorder_stages(self._stages),
                                              enable_total_count=self._settings.enable_total_count)
        return self._compiled

    # region Execution

    def with_collection(self, collection) -> 'ApiFeatures':
        """ Set the collection to run the pipeline against

            :param collection: Anything with an aggregate(pipeline) method: a pymongo or a motor collection
        """
        self._collection = collection
        return self

    def exec(self) -> dict:
        """ Execute the pipeline: load the documents, and count them

            :return: {'documents': [...], 'totalCount': int | None}
        """
        return self._counting_pipeline().execute().result()

    async def exec_async(self) -> dict:
        """ Execute the pipeline asynchronously (motor): load the documents, and count them

            :return: {'documents': [...], 'totalCount': int | None}
        """
        cp = await self._counting_pipeline().execute_async()
        return cp.result()

    def count(self) -> int:
        """ Count the documents that match the pipeline, ignoring pagination """
        pipeline = self._count_pipeline()
        return _total_from_rows(self._get_collection().aggregate(pipeline))

    async def count_async(self) -> int:
        """ Count the documents asynchronously (motor) """
        pipeline = self._count_pipeline()
        rows = await self._get_collection().aggregate(pipeline).to_list(length=None)
        return _total_from_rows(rows)

    def _counting_pipeline(self) -> CountingPipeline:
        pipeline = self.end()
        self._log_pipeline(pipeline.facet())
        return CountingPipeline(self._get_collection(), pipeline)

    def _count_pipeline(self) -> list:
        pipeline = [s.to_mongo() for s in counting_stages(self.end().stages)]
        self._log_pipeline(pipeline)
        return pipeline

    def _get_collection(self):
        assert self._collection is not None, 'Call with_collection() before executing the pipeline'
        return self._collection

    def _log_pipeline(self, pipeline):
        if self._settings.log_query:
            logger.info('ApiFeatures(%s) pipeline: %s',
                        self._schema.model_name,
                        json.dumps(pipeline, indent=2, default=str))

    # endregion

    def __repr__(self):
        return 'ApiFeatures({})'.format(self._schema.model_name)

    # region Operation handlers

    # This section initializes every operation handler.
    # Doing it this way enables you to override the way they are initialized, and use a custom handler class.

    _QO_HANDLER_FILTER = handlers.ApiFeaturesFilter
    _QO_HANDLER_SEARCH = handlers.ApiFeaturesSearch
    _QO_HANDLER_SORT = handlers.ApiFeaturesSort
    _QO_HANDLER_PROJECT = handlers.ApiFeaturesProject
    _QO_HANDLER_LIMIT = handlers.ApiFeaturesLimit
    _QO_HANDLER_POPULATE = handlers.ApiFeaturesPopulate

    HANDLER_NAMES = frozenset(('filter',
                               'search',
                               'sort',
                               'project',
                               'limit',
                               'populate'))

    # for IDE completion
    handler_filter = None  # type: apifeatures.handlers.ApiFeaturesFilter
    handler_search = None  # type: apifeatures.handlers.ApiFeaturesSearch
    handler_sort = None  # type: apifeatures.handlers.ApiFeaturesSort
    handler_project = None  # type: apifeatures.handlers.ApiFeaturesProject
    handler_limit = None  # type: apifeatures.handlers.ApiFeaturesLimit
    handler_populate = None  # type: apifeatures.handlers.ApiFeaturesPopulate

    def _init_query_object_handlers(self):
        """ Initialize every operation handler """
        for name in self.HANDLER_NAMES:
            handler_cls = getattr(self, '_QO_HANDLER_' + name.upper())
            setattr(self, 'handler_' + name, self._init_handler(name, handler_cls))

    def _init_handler(self, handler_name, handler_cls):
        """ Init a handler """
        return handler_cls(self._schema, self._settings, self._lang)

    # endregion

    # region Internals

    def _init_lang(self, lang):
        """ Initialize: the current language """
        if not lang:
            lang = self._query_object.get('lang')
        if not lang or not self._settings.is_lang_available(lang):
            lang = self._settings.default_lang
        return lang

    def _raise_if_compiled(self):
        if self._compiled is not None:
            raise RuntimeError('The pipeline has already been compiled with end(): '
                               'no more operations can be added')

    # endregion


def _total_from_rows(rows) -> int:
    """ Get the count from the result of a count pipeline: [{'total': N}], or [] """
    for row in rows:
        return row.get(COUNT_FIELD, 0)
    return 0
