class BaseApiFeaturesException(Exception):
    pass


class InvalidQueryError(BaseApiFeaturesException):
    """ Invalid input provided by the User """

    def __init__(self, err: str):
        super(InvalidQueryError, self).__init__('Query object error: {err}'.format(err=err))


class InvalidFilterValue(InvalidQueryError):
    """ A filter value could not be coerced into the declared type of its field """

    def __init__(self, field: str, value, expected_type: str):
        self.field = field
        self.value = value
        self.expected_type = expected_type

        super(InvalidFilterValue, self).__init__(
            'Invalid value {value!r} for field "{field}": expected {expected_type}'.format(
                value=value,
                field=field,
                expected_type=expected_type)
        )


class ConfigurationError(BaseApiFeaturesException):
    """ The schema or the settings do not match what the query needs

        This is the developer's error, not the API user's.
    """


class UnresolvedRelationError(ConfigurationError):
    """ A field was asked to be populated, but the schema has no relation target for it """

    def __init__(self, model: str, field: str):
        self.model = model
        self.field = field

        super(UnresolvedRelationError, self).__init__(
            'Field "{field}" of "{model}" has no relation target and cannot be populated'.format(
                field=field,
                model=model)
        )


class SettingsFrozenError(ConfigurationError):
    """ Process-wide settings were changed after they have been used """
