from typing import List, Optional, Sequence

from .stages import Stage, Skip, Limit, Count, Facet


#: The field that holds the count in the count pipeline
COUNT_FIELD = 'total'


class CompiledPipeline:
    """ The result of ApiFeatures: a pipeline in the canonical order, and the matching count pipeline

        The count pipeline is the same pipeline, without $skip and $limit, with a terminal {$count: 'total'}.
        It is `None` when counting is disabled.
    """

    __slots__ = ('stages', 'count_stages')

    def __init__(self, stages: Sequence[Stage], enable_total_count: bool = True):
        #: Pipeline stages
        self.stages = tuple(stages)
        #: Count pipeline stages, or `None`
        self.count_stages = counting_stages(self.stages) if enable_total_count else None

    def to_mongo(self) -> List[dict]:
        """ Get the pipeline as a list of documents """
        return [s.to_mongo() for s in self.stages]

    def count_to_mongo(self) -> Optional[List[dict]]:
        """ Get the count pipeline as a list of documents, or `None` """
        if self.count_stages is None:
            return None
        return [s.to_mongo() for s in self.count_stages]

    def facet(self) -> List[dict]:
        """ Get the pipeline that loads the documents and counts them in one go

            [{'$facet': {'documents': [...], 'totalCount': [..., {'$count': 'total'}]}}]
        """
        branches = {'documents': self.stages}
        if self.count_stages is not None:
            branches['totalCount'] = self.count_stages
        return [Facet(branches).to_mongo()]

    def __iter__(self):
        return iter(self.stages)

    def __len__(self):
        return len(self.stages)

    def __repr__(self):
        return 'CompiledPipeline({!r})'.format(list(self.stages))


def counting_stages(stages: Sequence[Stage]) -> tuple:
    """ Get the count pipeline for the given stages """
    return tuple(s for s in stages if not isinstance(s, (Skip, Limit))) + (Count(COUNT_FIELD),)
