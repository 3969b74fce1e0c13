from typing import Mapping

from .query import ApiFeatures
from .schema import ModelSchema
from .settings import ApiFeaturesSettings


class ApiFeaturesBase:
    """ Mixin for SqlAlchemy models that provides the .api_features() method for convenience

        The model describes a collection of documents:

            class Item(Base, ApiFeaturesBase):
                __tablename__ = 'items'
                __collection__ = 'items'  # optional: see api_features_collection_name()
                __translatable__ = ('name', 'description')

                _id = Column(String, primary_key=True)
                name = Column(String)
                ...

            Item.api_features(request.args).filter().sort().paginate().with_collection(db.items).exec()
    """

    #: Translatable fields
    __translatable__ = ()

    # Override this method in your subclass in order to be able to configure ApiFeatures on a per-model basis!
    @classmethod
    def _init_api_features(cls, query: Mapping, lang: str = None, settings: ApiFeaturesSettings = None) -> ApiFeatures:
        """ Create an ApiFeatures object for this model

            Override this method in order to initialize ApiFeatures the way you need.
            For example, you might want to give it custom settings.
        """
        return ApiFeatures(cls.api_features_schema(), query, lang=lang, settings=settings)

    @classmethod
    def api_features_schema(cls) -> ModelSchema:
        """ Get the schema of this model ; it is initialized only once """
        return ModelSchema.for_model(cls)

    @classmethod
    def api_features_collection_name(cls) -> str:
        """ Get the name of the collection this model describes: `__collection__`, or the lower-cased plural class name

            This is a convenience for the caller, e.g. `with_collection(db[Item.api_features_collection_name()])`.
            Populated relations do not use it: their collection is always the lower-cased plural target name.
        """
        return getattr(cls, '__collection__', None) or cls.__name__.lower() + 's'

    @classmethod
    def api_features(cls, query: Mapping = None, lang: str = None, settings: ApiFeaturesSettings = None) -> ApiFeatures:
        """ Build an ApiFeatures object

        :param query: The raw query map: decoded query string parameters
        :param lang: The current language
        :param settings: Custom settings; the process-wide defaults otherwise
        :rtype: apifeatures.ApiFeatures
        """
        return cls._init_api_features(query or {}, lang=lang, settings=settings)
