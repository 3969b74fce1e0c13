from .base import ApiFeaturesHandlerBase

from .filter import ApiFeaturesFilter
from .search import ApiFeaturesSearch
from .sort import ApiFeaturesSort
from .project import ApiFeaturesProject
from .limit import ApiFeaturesLimit
from .populate import ApiFeaturesPopulate
