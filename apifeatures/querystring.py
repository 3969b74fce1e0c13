""" Helpers for the HTTP side: query strings, cookies, the current language

Your web framework has most likely decoded the query string already; if it does not support
the bracket notation (`field[gt]=5`), use `parse_query_string()`.
"""

import re
from typing import Mapping, Optional
from urllib.parse import unquote, unquote_plus

from .settings import ApiFeaturesSettings, get_default_settings


# Key syntax: `name`, `name.sub`, `name[sub][sub]`
_KEY_RX = re.compile(r'^(?P<head>[^\[]*)(?P<brackets>(?:\[[^\]]*\])*)$')
_BRACKET_RX = re.compile(r'\[([^\]]*)\]')


def parse_query_string(qs: str) -> dict:
    """ Decode a query string into a nested dict

        Both the bracket notation and the dot notation make nested objects:

            >>> parse_query_string('name=Jane&externalId[gt]=101&variant.color=red')
            {'name': 'Jane', 'externalId': {'gt': '101'}, 'variant': {'color': 'red'}}

        When a key is repeated, the last value wins.
        The `->` nested join separator is left as it is.

        :param qs: The query string, with or without the leading '?'
    """
    result = {}
    for pair in qs.lstrip('?').split('&'):
        if not pair:
            continue
        key, _, value = pair.partition('=')
        _set_nested(result, _split_key(unquote_plus(key)), unquote_plus(value))
    return result


def _split_key(key: str) -> list:
    """ Split a key into path segments: 'a.b[c][d]' -> ['a', 'b', 'c', 'd'] """
    m = _KEY_RX.match(key)
    if m is None or not m.group('head'):
        # Not our syntax: keep the key as it is
        return [key]

    segments = m.group('head').split('.')
    segments.extend(_BRACKET_RX.findall(m.group('brackets')))
    # `a[]` is the same as `a`
    return [s for s in segments if s] or [key]


def _set_nested(target: dict, path: list, value):
    *parents, last = path
    for segment in parents:
        node = target.get(segment)
        if not isinstance(node, dict):
            # A scalar gets overwritten by an object
            target[segment] = node = {}
        target = node
    target[last] = value


def get_cookie(cookie_header: Optional[str], name: str) -> Optional[str]:
    """ Get the value of a cookie from the `Cookie` header

        :param cookie_header: Value of the `Cookie` HTTP header, e.g. 'lang=it; session=abc'
        :param name: Cookie name
        :return: The value, or `None` when there's no such cookie
    """
    if not cookie_header:
        return None

    for pair in cookie_header.split(';'):
        key, sep, value = pair.strip().partition('=')
        if sep and key == name:
            return unquote(value)
    return None


def resolve_language(query: Optional[Mapping], cookie_header: Optional[str] = None,
                     settings: ApiFeaturesSettings = None) -> str:
    """ Find out the language of the current request

        In order of preference:

        1. The `lang` query parameter
        2. The `lang` cookie
        3. The default language

        A language that is not among `available_langs` is replaced with the default one.

        :param query: Raw query map
        :param cookie_header: Value of the `Cookie` HTTP header
        :param settings: Settings to use; the process-wide defaults otherwise
    """
    if settings is None:
        settings = get_default_settings()

    lang = (query or {}).get('lang') or get_cookie(cookie_header, 'lang')
    if not lang or not isinstance(lang, str) or not settings.is_lang_available(lang):
        return settings.default_lang
    return lang
