# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from weatherplot.python import reprproxy

__all__ = 'MappingError', 'UnmappedTypeError', 'RequiredFieldMissing', 'ConversionError', 'UninitializedCollectionError', 'NameMismatchError'  # noqa: RUF022


class MappingError(Exception):
    """Base class for the errors raised while mapping between objects and XML."""


class UnmappedTypeError(MappingError, TypeError):
    """Raised when a type is used as a mapping target without declaring an element name."""

    def __init__(self, model_type: object, reason: str | None = None) -> None:
        self.model_type = model_type
        self.reason = reason
        message = f'{reprproxy(model_type)} is not a mapped XML element type'
        super().__init__(f'{message}: {reason}' if reason else message)


class RequiredFieldMissing(MappingError, ValueError):
    """Raised when a document lacks a mandatory attribute or element."""

    def __init__(self, field: str, kind: str, xml_name: str, parent: str) -> None:
        self.field = field
        self.kind = kind
        self.xml_name = xml_name
        self.parent = parent
        super().__init__(f'Missing mandatory {kind} {xml_name!r} from {parent!r}')


class ConversionError(MappingError, ValueError):
    """
    Raised when a value cannot be converted between its XML text and its data type.

    The raw_value is the XML text when parsing and the python value when
    building, while target_type is the type that could not be produced.
    """

    def __init__(self, field: str | None, raw_value: object, target_type: type, reason: str | None = None) -> None:
        self.field = field
        self.raw_value = raw_value
        self.target_type = target_type
        self.reason = reason
        message = f'Cannot convert {raw_value!r} to {reprproxy(target_type)}'
        if field is not None:
            message = f'{message} for field {field!r}'
        super().__init__(f'{message}: {reason}' if reason else message)


class UninitializedCollectionError(MappingError, TypeError):
    """Raised when a list field does not hold a list container."""

    def __init__(self, field: str, owner: type) -> None:
        self.field = field
        self.owner = owner
        super().__init__(f'the {field!r} list of {owner.__qualname__!r} is not initialized')


class NameMismatchError(MappingError, ValueError):
    """Raised when the element tag does not match the expected element name."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f'The element tag does not match the expected name: {actual!r} != {expected!r}')
