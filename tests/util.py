from apifeatures import ApiFeaturesSettings


class FakeCollection:
    """ A collection that records the pipelines it is given, and returns prepared results """

    def __init__(self, *results):
        #: Results to return, one per aggregate() call
        self.results = list(results)
        #: Pipelines received
        self.pipelines = []

    def aggregate(self, pipeline):
        self.pipelines.append(pipeline)
        return iter(self.results.pop(0) if self.results else [])


class FakeAsyncCursor:
    def __init__(self, rows):
        self.rows = rows
        self.to_list_length = 'not called'

    async def to_list(self, length):
        self.to_list_length = length
        return list(self.rows)


class FakeAsyncCollection(FakeCollection):
    """ A motor-like collection: aggregate() returns a cursor with an awaitable to_list() """

    def __init__(self, *results):
        super(FakeAsyncCollection, self).__init__(*results)
        #: Cursors returned
        self.cursors = []

    def aggregate(self, pipeline):
        self.pipelines.append(pipeline)
        cursor = FakeAsyncCursor(self.results.pop(0) if self.results else [])
        self.cursors.append(cursor)
        return cursor


class FailingCollection:
    """ A collection that fails """

    def aggregate(self, pipeline):
        raise ConnectionError('engine is down')


def settings(**kwargs) -> ApiFeaturesSettings:
    """ Make settings for a test """
    return ApiFeaturesSettings.create(**kwargs)


#: Translations enabled, the default language is English
TRANSLATED = ApiFeaturesSettings.create(translations_enabled=True, default_lang='en')
