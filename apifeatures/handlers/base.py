from typing import List

from ..schema import SchemaDescriptor
from ..settings import ApiFeaturesSettings
from ..stages import Stage


class ApiFeaturesHandlerBase:
    """ An implementation of a handler from ApiFeatures

        Every subclass handles a single operation: filter, search, sort, etc.
        A handler receives the Query Object with input(), and produces pipeline stages with compile_stages().
    """

    #: Name of the operation that this object is capable of handling
    query_object_section_name = None

    def __init__(self, schema: SchemaDescriptor, settings: ApiFeaturesSettings, lang: str):
        """ Initialize the handler

        This method does *not* receive any input data just yet.

        :param schema: The schema of the collection being queried
        :param settings: The settings to use
        :param lang: The current language
        """
        #: The schema to look fields up in
        self.schema = schema
        #: Settings
        self.settings = settings
        #: The current language
        self.lang = lang

        # Has the input() method been called already?
        self.input_received = False

        #: The Query Object this handler was given
        self.query_object = None

    def input(self, query_object):
        """ Get the Query Object

        The purpose of this method is to receive the input, validate it, and store it.
        Note that validation does not *have* to happen here: it may in fact be implemented in compile_stages().

        :param query_object: The classified query parameters
        :type query_object: apifeatures.query_object.QueryObject
        :rtype: ApiFeaturesHandlerBase
        :raises InvalidQueryError
        """
        self.query_object = query_object  # no copying. Try not to modify it.

        # Set the flag
        self.input_received = True

        # Make sure that input() can only be used once
        self.input = self.__raise_input_not_reusable

        return self

    def __raise_input_not_reusable(self, *args, **kwargs):
        raise RuntimeError("You can't use the {}.input() method twice: "
                           "every ApiFeatures operation can only be applied once"
                           .format(self.__class__.__name__))

    def compile_stages(self) -> List[Stage]:
        """ Compile the pipeline stages for this operation

        :rtype: list[Stage]
        """
        raise NotImplementedError()

    # region Translatable fields

    def is_translatable(self, field: str) -> bool:
        """ Is the field stored per-language? """
        return self.settings.translations_enabled and field in self.schema.translatable_fields()

    def translated_path(self, field: str, lang: str = None) -> str:
        """ Get the path of the field's value in the given language (the current one by default) """
        return 'translations.{}.{}'.format(lang or self.lang, field)

    def fallback_path(self, field: str) -> str:
        """ Get the path to fall back to when the field has no value in the current language

            This is the value in the default language; or, when the current language is the default one,
            the value stored on the document itself.
        """
        if self.lang != self.settings.default_lang:
            return self.translated_path(field, self.settings.default_lang)
        else:
            return field

    def query_paths(self, field: str) -> List[str]:
        """ Get the paths to look the field up at

            :return: [path] for a regular field, [path, fallback path] for a translatable one
        """
        if self.is_translatable(field):
            return [self.translated_path(field), self.fallback_path(field)]
        else:
            return [field]

    # endregion

    def hidden_fields_projection(self) -> dict:
        """ Get the projection that hides the `fields_to_hide` """
        return {name: 0 for name in sorted(self.settings.fields_to_hide)}
