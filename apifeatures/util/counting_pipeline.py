from ..pipeline import CompiledPipeline, COUNT_FIELD


class CountingPipeline:
    """ Pipeline executor that counts the documents while returning them

        This is achieved by running the pipeline inside a $facet stage with two branches:

            documents:  the pipeline
            totalCount: the pipeline without $skip/$limit, followed by {$count: 'total'}

        Only one request is made to the aggregation engine.
        The documents are available by iterating, and the total count is available through a property.

        Example:

            ```python
            qc = CountingPipeline(db.items, pipeline)

            # Get the count
            qc.count  # -> 127

            # Get the results
            list(qc)

            # (!) only one aggregation was made
            ```

        With the total count disabled, the count branch is not sent at all, and `count` is `None`.
    """
    __slots__ = ('_collection', '_pipeline', '_documents', '_count', '_executed')

    def __init__(self, collection, pipeline: CompiledPipeline):
        # The collection: anything with an aggregate(pipeline) method
        self._collection = collection

        # The pipeline to execute
        self._pipeline = pipeline

        # The results ; `None` if the pipeline has not yet been executed
        self._documents = None
        self._count = None
        self._executed = False

    @property
    def count(self):
        """ Get the total count

            If the pipeline has not been executed yet, it will be at this point.
        """
        if not self._executed:
            self.execute()
        return self._count

    @property
    def documents(self) -> list:
        """ Get the documents """
        if not self._executed:
            self.execute()
        return self._documents

    def __iter__(self):
        """ Get the documents """
        return iter(self.documents)

    def execute(self) -> 'CountingPipeline':
        """ Execute the pipeline, synchronously (pymongo)

            Errors of the aggregation engine are propagated as they are.
        """
        rows = list(self._collection.aggregate(self._pipeline.facet()))
        self._load_result(rows)
        return self

    async def execute_async(self) -> 'CountingPipeline':
        """ Execute the pipeline, asynchronously (motor)

            Errors of the aggregation engine are propagated as they are.
        """
        cursor = self._collection.aggregate(self._pipeline.facet())
        rows = await cursor.to_list(length=None)
        self._load_result(rows)
        return self

    def result(self) -> dict:
        """ Get the result: {'documents': [...], 'totalCount': int | None} """
        return {
            'documents': self.documents,
            'totalCount': self.count,
        }

    # region Result processing

    def _load_result(self, rows):
        """ Unpack the single $facet result document """
        facet = rows[0] if rows else {}
        self._documents = list(facet.get('documents') or ())
        self._count = self._get_count_from_result(facet) if self._pipeline.count_stages is not None else None
        self._executed = True

    @staticmethod
    def _get_count_from_result(facet) -> int:
        """ Get the count from the totalCount branch: [{'total': N}], or [] when nothing matched """
        total_count = facet.get('totalCount') or ()
        for row in total_count:
            return row.get(COUNT_FIELD, 0)
        return 0

    # endregion
