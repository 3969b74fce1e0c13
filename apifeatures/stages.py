""" Aggregation pipeline stages

Every step of a pipeline is an instance of one of the Stage classes below.
Stages are values: they are built once and never modified; every class copies its input.

Use `Stage.to_mongo()` to get the document that the aggregation engine understands,
and `Stage.from_mongo()` to go the other way.
"""

from copy import deepcopy
from typing import Mapping, Sequence, Optional


class Stage:
    """ A stage of an aggregation pipeline """

    __slots__ = ()

    #: The pipeline operator this stage compiles to
    operator = None

    def to_mongo(self) -> dict:
        """ Compile the stage into a document: {'$operator': argument} """
        return {self.operator: self._argument()}

    def _argument(self):
        raise NotImplementedError()

    @staticmethod
    def from_mongo(document: Mapping) -> 'Stage':
        """ Parse a stage document

            Known operators become typed stages; everything else is kept as a RawStage.
        """
        if isinstance(document, Stage):
            return document
        if not isinstance(document, Mapping) or len(document) != 1:
            return RawStage(document)

        (operator, argument), = document.items()
        if operator == '$match':
            return Match(argument)
        elif operator == '$sort':
            return Sort(argument)
        elif operator == '$project':
            return Project(argument)
        elif operator == '$skip':
            return Skip(argument)
        elif operator == '$limit':
            return Limit(argument)
        elif operator in ('$addFields', '$set'):
            return AddFields(argument)
        elif operator == '$lookup':
            return Lookup(from_collection=argument['from'],
                          as_field=argument['as'],
                          let=argument.get('let'),
                          pipeline=[Stage.from_mongo(s) for s in argument.get('pipeline', ())],
                          local_field=argument.get('localField'),
                          foreign_field=argument.get('foreignField'))
        elif operator == '$count':
            return Count(argument)
        elif operator == '$facet':
            return Facet({name: [Stage.from_mongo(s) for s in stages]
                          for name, stages in argument.items()})
        else:
            return RawStage(document)

    def _key(self):
        return tuple(getattr(self, name) for name in self.__slots__)

    def __eq__(self, other):
        return type(self) is type(other) and self._key() == other._key()

    def __ne__(self, other):
        return not self == other

    __hash__ = None

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__,
                               ', '.join(repr(v) for v in self._key()))


class Match(Stage):
    """ Filter documents: {'$match': criteria} """
    __slots__ = ('criteria',)
    operator = '$match'

    def __init__(self, criteria: Mapping):
        self.criteria = deepcopy(dict(criteria))

    def _argument(self):
        return deepcopy(self.criteria)


class Sort(Stage):
    """ Sort documents: {'$sort': {field: +1|-1}}

        The order of fields matters: it is preserved.
    """
    __slots__ = ('spec',)
    operator = '$sort'

    def __init__(self, spec: Mapping[str, int]):
        self.spec = dict(spec)

    def _argument(self):
        return dict(self.spec)

    def has_relevance(self) -> bool:
        """ Does this stage sort by a search score? """
        return any(key in self.spec for key in RELEVANCE_KEYS)


#: Names of the fields that hold a search score
RELEVANCE_KEYS = ('relevance', 'score')


class Project(Stage):
    """ Include or exclude fields: {'$project': {field: 1|0}} """
    __slots__ = ('projection',)
    operator = '$project'

    def __init__(self, projection: Mapping):
        self.projection = deepcopy(dict(projection))

    def _argument(self):
        return deepcopy(self.projection)


class Skip(Stage):
    """ Skip documents: {'$skip': n} """
    __slots__ = ('n',)
    operator = '$skip'

    def __init__(self, n: int):
        self.n = n

    def _argument(self):
        return self.n


class Limit(Stage):
    """ Limit the number of documents: {'$limit': n} """
    __slots__ = ('n',)
    operator = '$limit'

    def __init__(self, n: int):
        self.n = n

    def _argument(self):
        return self.n


class AddFields(Stage):
    """ Add computed fields: {'$addFields': {field: expression}} """
    __slots__ = ('fields',)
    operator = '$addFields'

    def __init__(self, fields: Mapping):
        self.fields = deepcopy(dict(fields))

    def _argument(self):
        return deepcopy(self.fields)


class Lookup(Stage):
    """ Join documents from another collection: {'$lookup': {...}}

        Two forms are supported:
        * Equality match: `local_field` + `foreign_field`
        * Correlated sub-pipeline: `let` + `pipeline`
    """
    __slots__ = ('from_collection', 'as_field', 'let', 'pipeline', 'local_field', 'foreign_field')
    operator = '$lookup'

    def __init__(self,
                 from_collection: str,
                 as_field: str,
                 let: Optional[Mapping] = None,
                 pipeline: Sequence[Stage] = (),
                 local_field: Optional[str] = None,
                 foreign_field: Optional[str] = None):
        self.from_collection = from_collection
        self.as_field = as_field
        self.let = dict(let) if let is not None else None
        self.pipeline = tuple(Stage.from_mongo(s) for s in pipeline)
        self.local_field = local_field
        self.foreign_field = foreign_field

    def _argument(self):
        argument = {'from': self.from_collection}
        if self.local_field is not None:
            argument['localField'] = self.local_field
        if self.foreign_field is not None:
            argument['foreignField'] = self.foreign_field
        if self.let is not None:
            argument['let'] = dict(self.let)
        if self.let is not None or self.pipeline:
            argument['pipeline'] = [s.to_mongo() for s in self.pipeline]
        argument['as'] = self.as_field
        return argument


class Count(Stage):
    """ Count documents into a field: {'$count': 'total'} """
    __slots__ = ('field',)
    operator = '$count'

    def __init__(self, field: str = 'total'):
        self.field = field

    def _argument(self):
        return self.field


class Facet(Stage):
    """ Run several pipelines over the same input: {'$facet': {name: [stages]}} """
    __slots__ = ('branches',)
    operator = '$facet'

    def __init__(self, branches: Mapping[str, Sequence[Stage]]):
        self.branches = {name: tuple(Stage.from_mongo(s) for s in stages)
                         for name, stages in branches.items()}

    def _argument(self):
        return {name: [s.to_mongo() for s in stages]
                for name, stages in self.branches.items()}


class RawStage(Stage):
    """ Any other stage, kept as is: e.g. {'$unwind': '$users'} """
    __slots__ = ('document',)

    def __init__(self, document: Mapping):
        self.document = deepcopy(dict(document))

    @property
    def operator(self):
        return next(iter(self.document), None)

    def to_mongo(self):
        return deepcopy(self.document)
