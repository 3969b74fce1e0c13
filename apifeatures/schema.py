""" Schema descriptors: what ApiFeatures needs to know about a collection

ApiFeatures never looks at your data. All it needs is a description of the documents:

* Which fields exist (unknown fields in the query are silently ignored)
* Their declared types (filter values are coerced into them)
* The collection that a relation field points to (for populating it)
* The set of translatable fields

The `SchemaDescriptor` interface provides exactly that. Two implementations are available:

* `DictSchema`: a plain mapping of field paths to types
* `ModelSchema`: a SqlAlchemy declarative model used as a description of a collection
"""

import enum
from typing import Mapping, Optional, FrozenSet, Union, Iterable, NamedTuple

from sqlalchemy import inspect
from sqlalchemy.sql import sqltypes
from sqlalchemy.orm import DeclarativeMeta


class FieldType(enum.Enum):
    """ Declared type of a field """
    STRING = 'String'
    NUMBER = 'Number'
    DATE = 'Date'
    BOOLEAN = 'Boolean'
    ARRAY = 'Array'
    RELATION = 'Relation'
    #: Anything else: an embedded document, a JSON blob, an id. Never coerced.
    MIXED = 'Mixed'


class SchemaField(NamedTuple):
    """ A field in a DictSchema """
    type: FieldType
    #: The name of the referenced model, for relations
    ref: Optional[str] = None


class SchemaDescriptor:
    """ Read-only information about a collection of documents """

    #: Name of the model described by this schema (used in error messages)
    model_name = None

    def declared_type(self, path: str) -> Optional[FieldType]:
        """ Get the declared type of a field

            :param path: Field path, dot-notation
            :return: The type, or `None` when the field is unknown or its type cannot be told
        """
        raise NotImplementedError()

    def relation_target(self, path: str) -> Optional[str]:
        """ Get the name of the model a relation field references

            :return: Model name, or `None` if the field is not a relation
        """
        raise NotImplementedError()

    def translatable_fields(self) -> FrozenSet[str]:
        """ Get the names of translatable fields """
        raise NotImplementedError()

    def field_paths(self) -> FrozenSet[str]:
        """ Get all known field paths """
        raise NotImplementedError()

    def has_field(self, path: str) -> bool:
        """ Test whether a field path is known to the schema

            A path is known when:
            * it is a field path, or a translatable field;
            * it is the parent of a nested field path (`variant` for `variant.color`);
            * it lies within a `MIXED` field, which may contain anything (`meta.anything`)
        """
        paths = self.field_paths()
        if path in paths or path in self.translatable_fields():
            return True

        # Parent of a nested path
        prefix = path + '.'
        if any(p.startswith(prefix) for p in paths):
            return True

        # Within a MIXED field
        segments = path.split('.')
        for n in range(len(segments) - 1, 0, -1):
            parent = '.'.join(segments[:n])
            if parent in paths:
                return self.declared_type(parent) is FieldType.MIXED
        return False

    def is_string(self, path: str) -> bool:
        return self.declared_type(path) is FieldType.STRING

    def __repr__(self):
        return '{}({})'.format(self.__class__.__name__, self.model_name)


class DictSchema(SchemaDescriptor):
    """ Schema described by a mapping

        Example:

            DictSchema({
                '_id': FieldType.MIXED,
                'name': FieldType.STRING,
                'externalId': 'Number',
                'createdAt': FieldType.DATE,
                'variant.color': FieldType.STRING,
                'users': SchemaField(FieldType.ARRAY, ref='User'),
                'author': SchemaField(FieldType.RELATION, ref='User'),
            }, translatable=('description',), model_name='Item')

        Types can be given as `FieldType`, as its value (e.g. 'String'), or as a `SchemaField`.
    """

    def __init__(self,
                 fields: Mapping[str, Union[FieldType, str, SchemaField]],
                 translatable: Iterable[str] = None,
                 model_name: str = None):
        self.model_name = model_name
        self._fields = {path: self._normalize_field(field)
                        for path, field in fields.items()}
        self._paths = frozenset(self._fields)
        self._translatable = frozenset(translatable or ())

    @staticmethod
    def _normalize_field(field) -> SchemaField:
        # SchemaField, or a (type, ref) tuple
        if isinstance(field, tuple):
            type_, *ref = field
            return SchemaField(FieldType(type_), *ref)
        return SchemaField(FieldType(field))

    def declared_type(self, path):
        field = self._fields.get(path)
        return field.type if field is not None else None

    def relation_target(self, path):
        field = self._fields.get(path)
        return field.ref if field is not None else None

    def translatable_fields(self):
        return self._translatable

    def field_paths(self):
        return self._paths


class ModelSchema(SchemaDescriptor):
    """ Schema described by a SqlAlchemy declarative model

    The model is only used as a description of the documents: ApiFeatures does not make any SQL queries.

    * Columns are fields, their SqlAlchemy types are mapped to FieldType
    * Relationships are relation fields: scalar relationships are `RELATION`, list relationships are `ARRAY`
    * JSON columns are `MIXED`: any path within them is accepted
    * Translatable fields are listed in the model's `__translatable__` attribute
    """
    __schema_per_model_cache = {}

    @classmethod
    def for_model(cls, model: DeclarativeMeta) -> 'ModelSchema':
        """ Get the schema for a model.

        Please use this method over __init__(), because it inspects the model only once
        """
        try:
            # Every model class has its own ModelSchema, and we want no one to inherit it.
            return cls.__schema_per_model_cache[model]
        except KeyError:
            cls.__schema_per_model_cache[model] = schema = cls(model)
            return schema

    def __init__(self, model: DeclarativeMeta):
        # We don't tolerate aliases here
        insp = inspect(model)
        if insp.is_aliased_class:
            raise TypeError('ModelSchema does not tolerate aliased() models')

        self.model = model
        self.model_name = model.__name__

        #: Fields: {path: SchemaField}
        self._fields = {}
        self._fields.update(self._init_columns(insp))
        self._fields.update(self._init_relationships(insp))
        self._paths = frozenset(self._fields)

        #: Translatable fields
        self._translatable = frozenset(getattr(model, '__translatable__', None) or ())

    # A bunch of initialization methods
    # This way, you can override the way a model is analyzed

    def _init_columns(self, insp):
        """ Initialize: Column properties """
        return {prop.key: SchemaField(_column_field_type(prop.columns[0].type))
                for prop in insp.column_attrs}

    def _init_relationships(self, insp):
        """ Initialize: Relationships """
        return {name: SchemaField(FieldType.ARRAY if rel.uselist else FieldType.RELATION,
                                  ref=rel.mapper.class_.__name__)
                for name, rel in insp.relationships.items()}

    def declared_type(self, path):
        field = self._fields.get(path)
        return field.type if field is not None else None

    def relation_target(self, path):
        field = self._fields.get(path)
        return field.ref if field is not None else None

    def translatable_fields(self):
        return self._translatable

    def field_paths(self):
        return self._paths


def schema_for(schema_or_model: Union[SchemaDescriptor, DeclarativeMeta, Mapping]) -> SchemaDescriptor:
    """ Get a SchemaDescriptor for a model or a mapping, or pass a SchemaDescriptor through """
    if isinstance(schema_or_model, SchemaDescriptor):
        return schema_or_model
    if isinstance(schema_or_model, Mapping):
        return DictSchema(schema_or_model)
    return ModelSchema.for_model(schema_or_model)


def _column_field_type(col_type: sqltypes.TypeEngine) -> FieldType:
    """ Map a SqlAlchemy column type to a FieldType """
    # TypeDecorator: use the underlying type
    impl = getattr(col_type, 'impl', None)
    if isinstance(col_type, sqltypes.TypeDecorator) and impl is not None:
        col_type = impl if isinstance(impl, sqltypes.TypeEngine) else impl()

    # The order matters: Enum is a String, Boolean and Date are checked before anything numeric
    if isinstance(col_type, sqltypes.ARRAY):
        return FieldType.ARRAY
    if isinstance(col_type, sqltypes.JSON):
        return FieldType.MIXED
    if isinstance(col_type, sqltypes.Boolean):
        return FieldType.BOOLEAN
    if isinstance(col_type, (sqltypes.DateTime, sqltypes.Date)):
        return FieldType.DATE
    if isinstance(col_type, (sqltypes.Integer, sqltypes.Numeric)):
        return FieldType.NUMBER
    if isinstance(col_type, sqltypes.String):
        return FieldType.STRING
    return FieldType.MIXED
