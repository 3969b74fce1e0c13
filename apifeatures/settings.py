from typing import NamedTuple, FrozenSet, Optional, Mapping

from .exc import SettingsFrozenError


class ApiFeaturesSettings(NamedTuple):
    """ ApiFeatures settings.

        The value is immutable: use `.replace()` to get a modified copy.

        Example:
            ```python
            from apifeatures import ApiFeatures, ApiFeaturesSettings

            settings = ApiFeaturesSettings(
                fields_to_hide=frozenset({'password', '__v'}),
                translations_enabled=True,
                default_lang='en',
            )
            features = ApiFeatures(User, request.args, settings=settings)
            ```

        Args:
            enable_total_count (bool):
                Count the total number of matching documents along with the page of results.
                When `False`, the count branch is not sent to the engine, and `totalCount` is `None`.
            fields_to_hide (frozenset[str]):
                Fields that are never returned: neither by the main query, nor by populated relations.
            translations_enabled (bool):
                Enable translatable fields: values stored per-language under `translations.<lang>.<field>`.
            default_lang (str):
                The default language. It is also the fallback language for translatable fields.
            available_langs (frozenset[str] | None):
                The languages that the API accepts. Any other language falls back to `default_lang`.
                `None` accepts any language.
            default_limit (int):
                Page size when the query has no `limit`.
            default_sort_field (str | None):
                The field to sort by, descending, when the query has no `sort`.
                `None` disables the default sorting.
            log_query (bool):
                Log the query parameters and the final aggregation pipeline.
    """
    enable_total_count: bool = True
    fields_to_hide: FrozenSet[str] = frozenset()
    translations_enabled: bool = False
    default_lang: str = 'en'
    available_langs: Optional[FrozenSet[str]] = None
    default_limit: int = 25
    default_sort_field: Optional[str] = 'createdAt'
    log_query: bool = False

    @classmethod
    def create(cls, **settings) -> 'ApiFeaturesSettings':
        """ Create settings from keyword arguments, validating and normalizing them

            :raises KeyError: unknown settings were given (probably, a typo)
            :raises ValueError: invalid setting value
        """
        # Check if there were any typos in setting names
        invalid_keys = set(settings) - set(cls._fields)
        if invalid_keys:
            raise KeyError('Invalid settings were provided for ApiFeatures: {}'
                           .format(','.join(sorted(invalid_keys))))

        # Collections are stored as frozensets
        if settings.get('fields_to_hide') is not None:
            settings['fields_to_hide'] = frozenset(settings['fields_to_hide'])
        else:
            settings.pop('fields_to_hide', None)
        if settings.get('available_langs') is not None:
            settings['available_langs'] = frozenset(settings['available_langs'])

        # Validate
        default_limit = settings.get('default_limit', cls._field_defaults['default_limit'])
        if not isinstance(default_limit, int) or isinstance(default_limit, bool) or default_limit <= 0:
            raise ValueError('default_limit must be a positive integer, {!r} given'.format(default_limit))

        return cls(**settings)

    @classmethod
    def from_dict(cls, settings: Mapping = None) -> 'ApiFeaturesSettings':
        """ Create settings from a nested dict, as used by JavaScript configuration files

            Example:

                ApiFeaturesSettings.from_dict({
                    'enableTotalCount': True,
                    'fieldsToHide': ['password'],
                    'translations': {'enabled': True, 'defaultLang': 'en', 'availableLangs': ['en', 'it']},
                    'pagination': {'defaultLimit': 25},
                    'debug': {'logQuery': False},
                })

            Missing or empty values get their defaults.
        """
        settings = settings or {}
        translations = settings.get('translations') or {}
        pagination = settings.get('pagination') or {}
        debug = settings.get('debug') or {}

        kwargs = dict(
            enable_total_count=settings.get('enableTotalCount', True) is not False,
            fields_to_hide=settings.get('fieldsToHide') or (),
            translations_enabled=bool(translations.get('enabled', False)),
            default_lang=translations.get('defaultLang') or 'en',
            available_langs=translations.get('availableLangs') or None,
            default_limit=pagination.get('defaultLimit') or 25,
            log_query=bool(debug.get('logQuery', False)),
        )
        if 'defaultSortField' in settings:
            kwargs['default_sort_field'] = settings['defaultSortField']
        return cls.create(**kwargs)

    def replace(self, **settings) -> 'ApiFeaturesSettings':
        """ Get a copy with some settings changed """
        return self.create(**{**self._asdict(), **settings})

    def is_lang_available(self, lang: str) -> bool:
        """ Test whether the language is accepted by the API """
        return self.available_langs is None or lang in self.available_langs


class SettingsRegistry:
    """ Keeper for the process-wide default settings

        The defaults are configured once, at bootstrap time, before any request is handled.
        As soon as any ApiFeatures has read them, they are frozen: changing settings while
        queries are being compiled is not supported.
    """

    def __init__(self, settings: ApiFeaturesSettings = None):
        self._settings = settings or ApiFeaturesSettings()
        self._frozen = False

    def configure(self, settings: ApiFeaturesSettings = None, **kwargs) -> ApiFeaturesSettings:
        """ Set the process-wide default settings

            :param settings: A complete settings object
            :param kwargs: ...or keyword settings for ApiFeaturesSettings.create()
            :raises SettingsFrozenError: the defaults have already been used
        """
        if self._frozen:
            raise SettingsFrozenError('Default settings have already been used by a query and cannot be changed. '
                                      'Call configure() before handling any request, '
                                      'or give custom settings to ApiFeatures directly.')
        assert settings is None or not kwargs, 'Provide either a settings object, or keyword settings'

        self._settings = settings if settings is not None else ApiFeaturesSettings.create(**kwargs)
        return self._settings

    def get(self) -> ApiFeaturesSettings:
        """ Get the default settings, and freeze them """
        self._frozen = True
        return self._settings

    @property
    def frozen(self) -> bool:
        return self._frozen


#: The process-wide registry
default_registry = SettingsRegistry()

configure = default_registry.configure
get_default_settings = default_registry.get
