import unittest
from datetime import datetime, timezone

from apifeatures import ApiFeatures, ModelSchema, DictSchema, SchemaField, FieldType
from apifeatures.handlers import *
from apifeatures.exc import InvalidQueryError, InvalidFilterValue, UnresolvedRelationError
from apifeatures.query_object import QueryObjectParser, EqualsExpression, OperatorExpression, RegexExpression, JoinExpression
from apifeatures.stages import Match, Sort, Project, Skip, Limit, AddFields, Lookup
from .models import User, Item, Category, company_schema
from .util import settings, TRANSLATED


def regex(text):
    return {'$regex': text, '$options': 'i'}


def relevance_term(path, text, then):
    return {'$cond': {
        'if': {'$regexMatch': {'input': '$' + path, 'regex': text, 'options': 'i'}},
        'then': then,
        'else': 0,
    }}


class QueryObjectTest(unittest.TestCase):
    """ Test the classification of query parameters """

    longMessage = True
    maxDiff = None

    def test_classify(self):
        parser = QueryObjectParser(ModelSchema.for_model(Item))
        qo = parser.parse({
            'name': 'Jane',
            'externalId': {'gt': '101'},
            'description': {'s': 'blue'},
            'users': {'p': 'name'},
            'author': {'p': ''},
            'sort': '-createdAt',
            'page': '2',
            'unknown': 'x',
            'variant': {'color': 'red'},
            'createdAt.lte': '2024-01-01',
            'price': {'in': '1;2'},
            'password': {'ne': 'x'},
        })

        # Control parameters
        self.assertEqual(qo.control, {'sort': '-createdAt', 'page': '2'})
        self.assertEqual(qo.get('sort'), '-createdAt')
        self.assertEqual(qo.get('limit'), None)

        # Filters: unknown fields are dropped
        self.assertEqual(qo.filters, [
            EqualsExpression('name', 'Jane'),
            OperatorExpression('externalId', '$gt', '101'),
            RegexExpression('description', 'blue'),
            EqualsExpression('variant.color', 'red'),
            OperatorExpression('createdAt', '$lte', '2024-01-01'),
            OperatorExpression('price', '$in', ['1', '2']),
        ])

        # Joins: an empty payload is a wildcard
        self.assertEqual(qo.joins, [
            JoinExpression('users', 'name'),
            JoinExpression('author', '*'),
        ])
        self.assertTrue(qo.joins[1].is_wildcard)

        # Empty
        self.assertEqual(parser.parse(None).filters, [])
        self.assertEqual(parser.parse({}).control, {})

    def test_classify_nested_joins(self):
        parser = QueryObjectParser(company_schema)
        qo = parser.parse({
            'owner->company': {'p': 'name'},
            'nobody->company': {'p': '*'},
            'variant': {'users': {'p': 'name;email'}},
        })

        self.assertEqual(qo.filters, [])
        self.assertEqual(qo.joins, [
            JoinExpression('owner->company', 'name'),
            JoinExpression('variant.users', 'name;email'),
        ])
        self.assertEqual(qo.joins[0].field, 'owner.company')
        self.assertEqual(qo.joins[0].key, 'owner->company')

    def test_flatten(self):
        flatten = lambda key, value: list(QueryObjectParser.flatten(key, value))

        self.assertEqual(flatten('a', '1'), [('a', '1')])
        self.assertEqual(flatten('a', {'b': {'c': '1'}, 'd': '2'}), [('a.b.c', '1'), ('a.d', '2')])
        self.assertEqual(flatten('a', {'s': 'x'}), [('a', {'s': 'x'})])
        self.assertEqual(flatten('a', {'b': {'p': '*'}}), [('a.b', {'p': '*'})])
        self.assertEqual(flatten('a', ['1', '2']), [('a', ['1', '2'])])

    def test_malformed(self):
        parser = QueryObjectParser(ModelSchema.for_model(Item))

        with self.assertRaises(InvalidQueryError):
            parser.parse({'sort': {'name': '1'}})
        with self.assertRaises(InvalidQueryError):
            parser.parse({'search': ['a', 'b']})
        with self.assertRaises(InvalidQueryError):
            parser.parse({'fields': {'a': '1'}})
        with self.assertRaises(InvalidQueryError):
            parser.parse({'page': {'a': '1'}})
        with self.assertRaises(InvalidQueryError) as e:
            parser.parse({'externalId': {'gt': {'s': '1'}}})
        self.assertTrue(str(e.exception).startswith('Query object error: '))

    def test_empty_objects(self):
        parser = QueryObjectParser(ModelSchema.for_model(Item))

        # Empty objects are dropped
        qo = parser.parse({'name': {}, 'variant': {'color': {}}, 'externalId': {'gt': {}}})
        self.assertEqual(qo.filters, [])
        self.assertEqual(qo.joins, [])
        self.assertEqual(list(QueryObjectParser.flatten('a', {})), [])

        # The whole chain survives them
        self.assertEqual(ApiFeatures(Item, {'name': {}}, settings=settings()).filter().stages, [])

        # An object without a marker can't be classified
        with self.assertRaises(InvalidQueryError):
            parser._classify('name', {'x': '1'})

    def test_flat_marker_keys(self):
        parser = QueryObjectParser(ModelSchema.for_model(Item))
        qo = parser.parse({
            'name.s': 'blue',
            'users.p': 'name',
            'author.p': '',
            'unknown.s': 'x',
        })

        self.assertEqual(qo.filters, [RegexExpression('name', 'blue')])
        self.assertEqual(qo.joins, [
            JoinExpression('users', 'name'),
            JoinExpression('author', '*'),
        ])

        # Nested joins
        qo = QueryObjectParser(company_schema).parse({'owner->company.p': 'name', 'variant.users.p': '*'})
        self.assertEqual(qo.joins, [
            JoinExpression('owner->company', 'name'),
            JoinExpression('variant.users', '*'),
        ])

        # Compiled like the bracket notation
        self.assertEqual(ApiFeatures(Item, {'name.s': 'blue'}, settings=settings()).filter().stages,
                         [Match({'name': regex('blue')})])
        self.assertEqual(len(ApiFeatures(Item, {'users.p': 'name'}, settings=settings()).populate().stages), 2)

        # A regex needs a string
        with self.assertRaises(InvalidQueryError):
            parser.parse({'name.s': ['a', 'b']})


class HandlersTest(unittest.TestCase):
    """ Test individual handlers """

    longMessage = True
    maxDiff = None

    def test_filter(self):
        filter_stages = lambda query, **kw: ApiFeatures(Item, query, settings=settings(**kw)).filter().stages

        # Equality
        self.assertEqual(filter_stages({'name': 'Jane'}), [Match({'name': 'Jane'})])

        # Every key is a separate $match
        self.assertEqual(filter_stages({'name': 'Jane', 'description': 'x'}),
                         [Match({'name': 'Jane'}), Match({'description': 'x'})])

        # Operators, numbers
        stages = filter_stages({'externalId': {'gt': '101'}})
        self.assertEqual(stages, [Match({'externalId': {'$gt': 101}})])
        self.assertIsInstance(stages[0].criteria['externalId']['$gt'], int)

        self.assertEqual(filter_stages({'externalId.ne': '5'}), [Match({'externalId': {'$ne': 5}})])
        self.assertEqual(filter_stages({'price': {'in': '1;2.5'}}), [Match({'price': {'$in': [1, 2.5]}})])
        self.assertEqual(filter_stages({'name': {'nin': 'a;b'}}), [Match({'name': {'$nin': ['a', 'b']}})])

        # Dates
        self.assertEqual(filter_stages({'createdAt': {'gte': '2024-01-01'}}),
                         [Match({'createdAt': {'$gte': datetime(2024, 1, 1)}})])
        self.assertEqual(filter_stages({'createdAt': '2024-01-01T10:00:00Z'}),
                         [Match({'createdAt': datetime(2024, 1, 1, 10, tzinfo=timezone.utc)})])
        self.assertEqual(filter_stages({'createdAt': '1700000000000'}),
                         [Match({'createdAt': datetime.fromtimestamp(1700000000, tz=timezone.utc)})])

        # Booleans
        self.assertEqual(filter_stages({'available': 'true'}), [Match({'available': True})])
        self.assertEqual(filter_stages({'available': 'yes'}), [Match({'available': False})])

        # Regex
        self.assertEqual(filter_stages({'description': {'s': 'blue'}}), [Match({'description': regex('blue')})])
        self.assertEqual(filter_stages({'description': {'s': 'a.b'}}), [Match({'description': regex(r'a\.b')})])

        # Mixed fields: no coercion
        self.assertEqual(filter_stages({'variant': {'size': '10'}}), [Match({'variant.size': '10'})])

        # Unknown fields
        self.assertEqual(filter_stages({'password': 'x', 'limit': '10'}), [])

    def test_filter_invalid_values(self):
        with self.assertRaises(InvalidFilterValue) as e:
            ApiFeatures(Item, {'externalId': 'abc'}, settings=settings()).filter()
        self.assertEqual(e.exception.field, 'externalId')
        self.assertEqual(e.exception.value, 'abc')
        self.assertEqual(e.exception.expected_type, 'Number')
        self.assertIsInstance(e.exception, InvalidQueryError)

        with self.assertRaises(InvalidFilterValue) as e:
            ApiFeatures(Item, {'externalId': {'in': '1;x'}}, settings=settings()).filter()
        self.assertEqual(e.exception.value, 'x')

        with self.assertRaises(InvalidFilterValue) as e:
            ApiFeatures(Item, {'createdAt': {'lt': 'yesterday'}}, settings=settings()).filter()
        self.assertEqual(e.exception.expected_type, 'Date')

        with self.assertRaises(InvalidFilterValue):
            ApiFeatures(Item, {'price': 'nan'}, settings=settings()).filter()

    def test_filter_translations(self):
        filter_stages = lambda query, lang, settings=TRANSLATED: ApiFeatures(Item, query, lang=lang, settings=settings).filter().stages

        # Another language: fall back to the default one
        self.assertEqual(filter_stages({'name': 'X'}, 'it'), [
            Match({'$or': [{'translations.it.name': 'X'}, {'translations.en.name': 'X'}]})
        ])

        # The default language: fall back to the field itself
        self.assertEqual(filter_stages({'name': 'X'}, 'en'), [
            Match({'$or': [{'translations.en.name': 'X'}, {'name': 'X'}]})
        ])

        # Operators and regexes too
        self.assertEqual(filter_stages({'description': {'s': 'x'}}, 'it'), [
            Match({'$or': [{'translations.it.description': regex('x')}, {'translations.en.description': regex('x')}]})
        ])
        self.assertEqual(filter_stages({'name': {'ne': 'X'}}, 'it'), [
            Match({'$or': [{'translations.it.name': {'$ne': 'X'}}, {'translations.en.name': {'$ne': 'X'}}]})
        ])

        # Not translatable
        self.assertEqual(filter_stages({'externalId': '1'}, 'it'), [Match({'externalId': 1})])

        # Translations disabled
        self.assertEqual(filter_stages({'name': 'X'}, 'it', settings()), [Match({'name': 'X'})])

    def test_search(self):
        search_stages = lambda query, fields, **kw: ApiFeatures(Item, query, settings=settings(**kw)).search(fields).stages

        expected_match = Match({'$or': [{'name': regex('blue')}, {'description': regex('blue')}]})
        expected_relevance = AddFields({'relevance': {'$sum': [
            relevance_term('name', 'blue', -2),
            relevance_term('description', 'blue', -1),
        ]}})

        # Sort by relevance
        self.assertEqual(search_stages({'search': 'blue', 'sort': 'relevance'}, 'name;description'),
                         [expected_match, expected_relevance, Sort({'relevance': 1})])
        self.assertEqual(search_stages({'search': 'blue', 'sort': 'name;-relevance'}, ['name', 'description']),
                         [expected_match, expected_relevance, Sort({'relevance': -1})])

        # No relevance sort
        self.assertEqual(search_stages({'search': 'blue'}, 'name;description'),
                         [expected_match, expected_relevance])
        self.assertEqual(search_stages({'search': 'blue', 'sort': 'relevanceX'}, 'name;description'),
                         [expected_match, expected_relevance])

        # No-op: nothing to search for
        self.assertEqual(search_stages({}, 'name;description'), [])
        self.assertEqual(search_stages({'search': ''}, 'name;description'), [])

        # No-op: not a string, or unknown
        self.assertEqual(search_stages({'search': 'blue'}, 'name;externalId'), [])
        self.assertEqual(search_stages({'search': 'blue'}, 'name;nonexistent'), [])
        self.assertEqual(search_stages({'search': 'blue'}, ''), [])

    def test_search_relevance(self):
        """ Documents that match more important fields get a lower score """
        features = ApiFeatures(Item, {'search': 'blue'}, settings=settings()).search('name;description')
        relevance = features.stages[1].fields['relevance']['$sum']

        score = lambda *matching_paths: sum(term['$cond']['then']
                                            for term in relevance
                                            if term['$cond']['if']['$regexMatch']['input'][1:] in matching_paths)

        self.assertEqual(score('name'), -2)
        self.assertEqual(score('description'), -1)
        self.assertEqual(score('name', 'description'), -3)
        self.assertLess(score('name'), score('description'))

    def test_search_translations(self):
        features = ApiFeatures(Item, {'search': 'x'}, lang='it', settings=TRANSLATED).search('name;description')
        match, relevance = features.stages

        self.assertEqual(match, Match({'$or': [
            {'translations.it.name': regex('x')},
            {'translations.en.name': regex('x')},
            {'translations.it.description': regex('x')},
            {'translations.en.description': regex('x')},
        ]}))
        self.assertEqual(relevance, AddFields({'relevance': {'$sum': [
            relevance_term('translations.it.name', 'x', -4),
            relevance_term('translations.en.name', 'x', -3),
            relevance_term('translations.it.description', 'x', -2),
            relevance_term('translations.en.description', 'x', -1),
        ]}}))

    def test_sort(self):
        sort_stages = lambda query, **kw: ApiFeatures(Item, query, settings=settings(**kw)).sort().stages

        # Order matters
        stages = sort_stages({'sort': 'name;-email'})
        self.assertEqual(stages, [Sort({'name': 1, 'email': -1})])
        self.assertEqual(list(stages[0].spec.items()), [('name', 1), ('email', -1)])

        # Whitespace, empty tokens
        self.assertEqual(list(sort_stages({'sort': ' b ; ;-a'})[0].spec.items()), [('b', 1), ('a', -1)])

        # Default
        self.assertEqual(sort_stages({}), [Sort({'createdAt': -1})])
        self.assertEqual(sort_stages({}, default_sort_field='updatedAt'), [Sort({'updatedAt': -1})])
        self.assertEqual(sort_stages({}, default_sort_field=None), [])

    def test_project(self):
        project_stages = lambda model, query, **kw: ApiFeatures(model, query, settings=settings(**kw)).limit_fields().stages

        # Inclusion, exclusion
        self.assertEqual(project_stages(User, {'fields': 'name;email'}), [Project({'name': 1, 'email': 1})])
        self.assertEqual(project_stages(User, {'fields': '-description'}), [Project({'description': 0})])

        # Mixed: inclusion wins, only `_id` may be excluded
        self.assertEqual(project_stages(User, {'fields': 'name;-email'}), [Project({'name': 1})])
        self.assertEqual(project_stages(User, {'fields': '-_id;name;-email'}), [Project({'_id': 0, 'name': 1})])

        # Nothing
        self.assertEqual(project_stages(User, {}), [])

        # Hidden fields: exclusion mode
        self.assertEqual(project_stages(User, {'fields': '-description'}, fields_to_hide={'password'}),
                         [Project({'description': 0, 'password': 0})])
        self.assertEqual(project_stages(User, {'fields': '-_id'}, fields_to_hide={'password'}),
                         [Project({'_id': 0, 'password': 0})])

        # Hidden fields: inclusion mode
        self.assertEqual(project_stages(User, {'fields': 'name;password'}, fields_to_hide={'password'}),
                         [Project({'name': 1})])
        self.assertEqual(project_stages(User, {'fields': 'password'}, fields_to_hide={'password'}),
                         [Project({'password': 0})])

        # Hidden fields only
        self.assertEqual(project_stages(User, {}, fields_to_hide={'password', '__v'}),
                         [Project({'__v': 0, 'password': 0})])

    def test_project_translations(self):
        project_stages = lambda query, lang: ApiFeatures(Item, query, lang=lang, settings=TRANSLATED).limit_fields().stages

        self.assertEqual(project_stages({'fields': 'name;externalId'}, 'it'), [Project({
            'name': 1,
            'translations.it.name': 1,
            'translations.en.name': 1,
            'externalId': 1,
        })])
        self.assertEqual(project_stages({'fields': '-name'}, 'en'), [Project({
            'name': 0,
            'translations.en.name': 0,
        })])

    def test_limit(self):
        limit_stages = lambda query, **kw: ApiFeatures(Item, query, settings=settings(**kw)).paginate().stages

        self.assertEqual(limit_stages({'limit': '1', 'page': '2'}), [Skip(1), Limit(1)])
        self.assertEqual(limit_stages({'limit': 10, 'page': 3}), [Skip(20), Limit(10)])

        # Defaults
        self.assertEqual(limit_stages({}), [Skip(0), Limit(25)])
        self.assertEqual(limit_stages({'page': '3'}, default_limit=10), [Skip(20), Limit(10)])
        self.assertEqual(limit_stages({'limit': 'abc', 'page': 'x'}), [Skip(0), Limit(25)])
        self.assertEqual(limit_stages({'limit': '0'}), [Skip(0), Limit(25)])
        self.assertEqual(limit_stages({'page': '0'}), [Skip(0), Limit(25)])
        self.assertEqual(limit_stages({'page': '-3'}), [Skip(0), Limit(25)])

        # Disabled
        self.assertEqual(limit_stages({'limit': '-1'}), [])
        self.assertEqual(limit_stages({'limit': '-5', 'page': '2'}), [])

        # Explicit skip
        self.assertEqual(limit_stages({'skip': '7', 'limit': '5', 'page': '3'}), [Skip(7), Limit(5)])
        self.assertEqual(limit_stages({'skip': '-1', 'limit': '5', 'page': '2'}), [Skip(5), Limit(5)])

    def test_populate(self):
        populate_stages = lambda schema, query, **kw: ApiFeatures(schema, query, settings=settings(**kw)).populate().stages

        def expected(local_field, collection, correlation, *pipeline):
            return [
                AddFields({local_field: {'$ifNull': ['$' + local_field, []]}}),
                Lookup(from_collection=collection,
                       as_field=local_field,
                       let={'localFieldValue': '$' + local_field},
                       pipeline=[Match({'$expr': {correlation: ['$_id', '$$localFieldValue']}}), *pipeline]),
            ]

        # Array relation: $in
        self.assertEqual(populate_stages(Item, {'users': {'p': 'name'}}),
                         expected('users', 'users', '$in', Project({'name': 1})))

        # Scalar relation: $eq ; wildcard
        self.assertEqual(populate_stages(Item, {'author': {'p': '*'}}),
                         expected('author', 'users', '$eq'))
        self.assertEqual(populate_stages(Item, {'author': {'p': ''}}),
                         expected('author', 'users', '$eq'))

        # +/-: once a field is included, the excluded ones are dropped ; hidden fields
        self.assertEqual(populate_stages(Item, {'users': {'p': '+name;-email;surname'}}, fields_to_hide=['password']),
                         expected('users', 'users', '$in',
                                  Project({'name': 1, 'surname': 1}),
                                  Project({'password': 0})))
        self.assertEqual(populate_stages(Item, {'users': {'p': 'name;-_id'}}),
                         expected('users', 'users', '$in', Project({'name': 1, '_id': 0})))
        self.assertEqual(populate_stages(Item, {'users': {'p': '-email;-_id'}}),
                         expected('users', 'users', '$in', Project({'email': 0, '_id': 0})))

        # Several relations
        self.assertEqual(populate_stages(Item, {'users': {'p': '*'}, 'author': {'p': '*'}}),
                         expected('users', 'users', '$in') + expected('author', 'users', '$eq'))

        # Nested relations
        self.assertEqual(populate_stages(company_schema, {'owner->company': {'p': '*'}}),
                         expected('owner.company', 'companys', '$eq'))
        self.assertEqual(populate_stages(company_schema, {'variant': {'users': {'p': '*'}}}),
                         expected('variant.users', 'users', '$in'))

        # The collection is named after the target, whatever `__collection__` the target model has
        schema = DictSchema({'category': SchemaField(FieldType.RELATION, ref=Category.__name__)}, model_name='Product')
        self.assertEqual(Category.api_features_collection_name(), 'item_categories')
        self.assertEqual(populate_stages(schema, {'category': {'p': '*'}}),
                         expected('category', 'categorys', '$eq'))

        # Nothing to populate
        self.assertEqual(populate_stages(Item, {'name': 'x'}), [])

    def test_populate_unresolved(self):
        with self.assertRaises(UnresolvedRelationError) as e:
            ApiFeatures(company_schema, {'orphan': {'p': '*'}}, settings=settings()).populate()
        self.assertEqual(e.exception.model, 'Company')
        self.assertEqual(e.exception.field, 'orphan')

        with self.assertRaises(UnresolvedRelationError):
            ApiFeatures(Item, {'name': {'p': '*'}}, settings=settings()).populate()

    def test_lookup_document(self):
        """ Test the $lookup document """
        stages = ApiFeatures(Item, {'users': {'p': 'name'}}, settings=settings()).populate().stages
        self.assertEqual(stages[1].to_mongo(), {'$lookup': {
            'from': 'users',
            'let': {'localFieldValue': '$users'},
            'pipeline': [
                {'$match': {'$expr': {'$in': ['$_id', '$$localFieldValue']}}},
                {'$project': {'name': 1}},
            ],
            'as': 'users',
        }})

    def test_handler_input_once(self):
        """ Every handler accepts its input only once """
        qo = QueryObjectParser(ModelSchema.for_model(Item)).parse({'sort': 'name'})
        handler = ApiFeaturesSort(ModelSchema.for_model(Item), settings(), 'en')
        handler.input(qo)
        self.assertTrue(handler.input_received)

        with self.assertRaises(RuntimeError):
            handler.input(qo)
