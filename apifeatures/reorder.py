""" Stage reordering

The operations of ApiFeatures can be applied in any order, and every one of them just appends its stages.
Before the pipeline is executed, the stages are put into the canonical order:

    [$match] -> [$addFields, $lookup, ... in their original order] -> [$sort] -> [$skip, $limit] -> [$project]

This is done in three passes:

1. All $sort stages are merged into one, which goes to the end.
   A stage that sorts by relevance (or score) comes first, so that it remains the primary sort key.
2. $skip and $limit go to the end; then all $project stages, merged into one.
3. All $match stages are merged into one, which goes to the very beginning.

Reordering is a pure function: it always gives the same result for the same input,
and reordering an already reordered pipeline changes nothing.
"""

from collections import OrderedDict
from copy import deepcopy
from typing import List, Sequence

from .stages import Stage, Match, Sort, Project, Skip, Limit


def reorder_stages(stages: Sequence[Stage]) -> List[Stage]:
    """ Put the stages into the canonical order

        :param stages: The stages, in the order they were added
        :return: A new list of stages
    """
    stages = list(stages)
    stages = consolidate_sort(stages)
    stages = relocate_pagination_and_projection(stages)
    stages = consolidate_match(stages)
    return stages


def consolidate_sort(stages: List[Stage]) -> List[Stage]:
    """ Merge all $sort stages into one, and put it at the end """
    sorts = [s for s in stages if isinstance(s, Sort)]
    stages = [s for s in stages if not isinstance(s, Sort)]

    spec = OrderedDict()

    # The relevance sort is the base
    relevance_sort = next((s for s in sorts if s.has_relevance()), None)
    if relevance_sort is not None:
        sorts.remove(relevance_sort)
        spec.update(relevance_sort.spec)

    # Later stages overwrite earlier ones
    for sort in sorts:
        spec.update(sort.spec)

    if spec:
        stages.append(Sort(spec))
    return stages


def relocate_pagination_and_projection(stages: List[Stage]) -> List[Stage]:
    """ Move $skip + $limit to the end; then, the merged $project """
    skip = next((s for s in stages if isinstance(s, Skip)), None)
    limit = next((s for s in stages if isinstance(s, Limit)), None)
    if skip is not None and limit is not None:
        stages = [s for s in stages if not isinstance(s, (Skip, Limit))]
        stages.extend((skip, limit))

    projects = [s for s in stages if isinstance(s, Project)]
    if projects:
        stages = [s for s in stages if not isinstance(s, Project)]
        projection = OrderedDict()
        for project in projects:
            projection.update(project.projection)
        stages.append(Project(projection))
    return stages


def consolidate_match(stages: List[Stage]) -> List[Stage]:
    """ Merge all $match stages into one, and put it first """
    matches = [s for s in stages if isinstance(s, Match)]
    if not matches:
        return stages

    criteria = {}
    for match in matches:
        merge_criteria(criteria, deepcopy(match.criteria))

    stages = [s for s in stages if not isinstance(s, Match)]
    stages.insert(0, Match(criteria))
    return stages


def merge_criteria(target: dict, criteria: dict) -> dict:
    """ Merge $match criteria into `target`, in-place

        * New fields are added
        * Two operator documents on the same field are combined: {$gte: 1} + {$lte: 5}
        * Two $or conditions are combined with $and: both must hold
        * Two $and lists are concatenated
        * Anything else: the later value wins
    """
    for key, value in criteria.items():
        if key not in target:
            target[key] = value
        elif key == '$or':
            target.setdefault('$and', []).extend([{'$or': target.pop('$or')}, {'$or': value}])
        elif key == '$and':
            target['$and'] = target['$and'] + value
        elif _is_operator_document(target[key]) and _is_operator_document(value):
            target[key] = {**target[key], **value}
        else:
            target[key] = value
    return target


def _is_operator_document(value) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith('$') for k in value)
