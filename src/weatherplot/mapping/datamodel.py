# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from binascii import Error as BinasciiError
from binascii import a2b_base64 as base64decode
from binascii import a2b_hex as hexdecode
from binascii import b2a_base64 as base64encode
from binascii import b2a_hex as hexencode
from collections.abc import Callable, MutableMapping
from datetime import UTC, date, datetime
from enum import Enum
from typing import ClassVar, Protocol, Self, cast, runtime_checkable

from .exceptions import ConversionError

__all__ = (  # noqa: RUF022
    'DataConverter',
    'DataAdapter',
    'DataAdapterType',
    'AdapterRegistry',
    'ValueDescriptor',

    'resolve_adapter',
    'parse_value',
    'build_value',

    'Base64BinaryAdapter',
    'HexBinaryAdapter',

    'BooleanAdapter',
    'DateAdapter',
    'DatetimeAdapter',
    'DatetimeFormatAdapter',
    'EnumAdapter',

    'IntegerAdapter',
    'Int8Adapter',
    'UInt8Adapter',
    'UInt16Adapter',
)


@runtime_checkable
class DataConverter(Protocol):
    """A protocol that describes how a data type converts between itself and XML"""

    @classmethod
    def xml_parse(cls, value: str) -> Self:
        """Parse XML into the data type"""
        ...

    def xml_build(self: Self) -> str:
        """Build XML from the data type"""
        ...


@runtime_checkable
class DataAdapter[T](Protocol):
    """A protocol that describes an external adapter between a data type T and XML"""

    @staticmethod
    def xml_parse(value: str, /) -> T:
        """Parse XML into the data type"""
        ...

    @staticmethod
    def xml_build(value: T, /) -> str:
        """Build XML from the data type"""
        ...


type DataAdapterType[T] = type[DataAdapter[T]]


class AdapterRegistry[T]:
    _adapters: ClassVar[MutableMapping[type, type[DataAdapter]]] = {}

    @classmethod
    def associate(cls, data_type: type[T], adapter: type[DataAdapter[T]]) -> None:
        if issubclass(data_type, DataConverter):
            raise TypeError('Adapters for types that already support the DataConverter protocol must be explicitly provided with the attribute/element descriptors.')
        cls._adapters[data_type] = adapter

    @classmethod
    def get_adapter(cls, data_type: type[T]) -> type[DataAdapter[T]] | None:
        return cls._adapters.get(data_type, None)


class ValueDescriptor[D](Protocol):
    """The part of a field descriptor that the value conversion relies on"""

    name: str | None
    type: type[D]

    xml_parse: Callable[[str], D]
    xml_build: Callable[[D], str]


class Base64BinaryAdapter:
    @staticmethod
    def xml_parse(value: str) -> bytes:
        try:
            return base64decode(value)
        except BinasciiError as exc:
            raise ValueError(f'invalid base64 data: {exc!s}') from exc

    @staticmethod
    def xml_build(value: bytes) -> str:
        return base64encode(value, newline=False).decode('ascii')


class HexBinaryAdapter:
    @staticmethod
    def xml_parse(value: str) -> bytes:
        try:
            return hexdecode(value.strip())
        except BinasciiError as exc:
            raise ValueError(f'invalid hex data: {exc!s}') from exc

    @staticmethod
    def xml_build(value: bytes) -> str:
        return hexencode(value).decode('ascii')


class BooleanAdapter:
    @staticmethod
    def xml_parse(value: str) -> bool:
        match value.strip():
            case 'true' | '1':
                return True
            case 'false' | '0':
                return False
            case _:
                raise ValueError(f'Invalid boolean value: {value!r}')

    @staticmethod
    def xml_build(value: bool) -> str:  # noqa: FBT001
        return 'true' if value else 'false'


class DateAdapter:
    @staticmethod
    def xml_parse(value: str) -> date:
        return date.fromisoformat(value.strip())

    @staticmethod
    def xml_build(value: date) -> str:
        return value.isoformat()


class DatetimeAdapter:
    @staticmethod
    def xml_parse(value: str) -> datetime:
        return datetime.fromisoformat(value.strip()).astimezone(UTC)

    @staticmethod
    def xml_build(value: datetime) -> str:
        return value.astimezone(UTC).isoformat()


AdapterRegistry.associate(bool, BooleanAdapter)
AdapterRegistry.associate(bytes, Base64BinaryAdapter)
AdapterRegistry.associate(date, DateAdapter)
AdapterRegistry.associate(datetime, DatetimeAdapter)


class DatetimeFormatAdapter:
    """
    Convert datetime values using an explicit strftime/strptime format.

    Subclasses specify the format as a class parameter:

      class TimestampAdapter(DatetimeFormatAdapter, format='%Y-%m-%dT%H:%M:%S'):
          pass

    An empty string maps to None and None builds an empty string, so the
    adapter can be used with optional attributes and elements.
    """

    def __init_subclass__(cls, *, format: str | None = None, **kw: object) -> None:  # noqa: A002
        super().__init_subclass__(**kw)

        if format is None:
            raise TypeError(f'{cls.__qualname__} must specify a datetime format')

        def xml_parse(value: str) -> datetime | None:
            if not value.strip():
                return None
            return datetime.strptime(value.strip(), format)  # noqa: DTZ007

        def xml_build(value: datetime | None) -> str:
            return '' if value is None else value.strftime(format)

        cls.format = format
        cls.xml_parse = staticmethod(xml_parse)  # type: ignore[method-assign]
        cls.xml_build = staticmethod(xml_build)  # type: ignore[method-assign]

    format: ClassVar[str]

    @staticmethod
    def xml_parse(value: str) -> datetime | None:
        raise NotImplementedError

    @staticmethod
    def xml_build(value: datetime | None) -> str:
        raise NotImplementedError


class EnumAdapter:
    """
    Convert Enum members by name, ignoring case when parsing.

    Subclasses specify the enum type as a class parameter:

      class ColorAdapter(EnumAdapter, enum=Color):
          pass
    """

    def __init_subclass__(cls, *, enum: type[Enum] | None = None, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if enum is None:
            raise TypeError(f'{cls.__qualname__} must specify an enum type')

        members = {name.casefold(): member for name, member in enum.__members__.items()}

        def xml_parse(value: str) -> Enum:
            try:
                return members[value.strip().casefold()]
            except KeyError:
                raise ValueError(f'{value!r} is not a valid {enum.__qualname__} name') from None

        def xml_build(value: Enum) -> str:
            if not isinstance(value, enum):
                raise ValueError(f'{value!r} is not a {enum.__qualname__} member')
            return value.name

        cls.enum = enum
        cls.xml_parse = staticmethod(xml_parse)  # type: ignore[method-assign]
        cls.xml_build = staticmethod(xml_build)  # type: ignore[method-assign]

    enum: ClassVar[type[Enum]]

    @staticmethod
    def xml_parse(value: str) -> Enum:
        raise NotImplementedError

    @staticmethod
    def xml_build(value: Enum) -> str:
        raise NotImplementedError


class IntegerAdapter:
    """
    Convert integers, optionally restricted to a range of values.

    Subclasses specify the range with min_value/max_value and a description
    used in error messages, or with the bit width of the integer:

      class PercentageAdapter(IntegerAdapter, min_value=0, max_value=100, name='percentage'):
          pass

      class UInt8Adapter(IntegerAdapter, bits=8, unsigned=True):
          pass

    Range limits that a subclass does not specify are inherited.
    """

    name: ClassVar[str] = 'integer'
    min_value: ClassVar[int | None] = None
    max_value: ClassVar[int | None] = None

    def __init_subclass__(cls, *, min_value: int | None = None, max_value: int | None = None, name: str | None = None, bits: int | None = None, unsigned: bool = False, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if bits is not None:
            if bits <= 0:
                raise ValueError('when specified, bits must be a positive integer')
            cls.name = f'{"unsigned" if unsigned else "signed"} {bits}-bit integer'
            cls.min_value = 0 if unsigned else -(2 ** (bits - 1))
            cls.max_value = cls.min_value + 2**bits - 1
            return

        if min_value is not None:
            cls.min_value = min_value
        if max_value is not None:
            cls.max_value = max_value
        if name is not None:
            cls.name = name
        if cls.min_value is not None and cls.max_value is not None and cls.min_value > cls.max_value:
            raise ValueError(f'{cls.__qualname__} has an empty range: {cls.min_value} > {cls.max_value}')

    @classmethod
    def check(cls, number: int) -> int:
        if (cls.min_value is not None and number < cls.min_value) or (cls.max_value is not None and number > cls.max_value):
            raise ValueError(f'invalid value {number!r} for {cls.name}')
        return number

    @classmethod
    def xml_parse(cls, value: str) -> int:
        return cls.check(int(value))

    @classmethod
    def xml_build(cls, value: int) -> str:
        return str(cls.check(value))


class Int8Adapter(IntegerAdapter, bits=8):
    pass


class UInt8Adapter(IntegerAdapter, bits=8, unsigned=True):
    pass


class UInt16Adapter(IntegerAdapter, bits=16, unsigned=True):
    pass


def resolve_adapter[D](data_type: type[D], adapter: DataAdapterType[D] | None = None) -> DataAdapterType[D] | None:
    """
    Find the adapter that converts data_type to and from XML.

    An explicitly provided adapter always wins. Otherwise a type that follows
    the DataConverter protocol is its own adapter, followed by the adapters
    associated in the registry. Enum types without an explicit adapter get an
    EnumAdapter generated for them. When nothing applies None is returned and
    the default primitive conversion is used (data_type(text) and str(value)).
    """
    if adapter is not None:
        return adapter
    if issubclass(data_type, DataConverter):
        return cast(DataAdapterType[D], data_type)  # A type that implements the DataConverter protocol is its own DataAdapter
    adapter = AdapterRegistry.get_adapter(data_type)
    if adapter is None and issubclass(data_type, Enum):
        adapter = cast(DataAdapterType[D], type(f'{data_type.__name__}Adapter', (EnumAdapter,), {}, enum=data_type))
    return adapter


def parse_value[D](descriptor: ValueDescriptor[D], text: str) -> D:
    try:
        return descriptor.xml_parse(text)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ConversionError(descriptor.name, text, descriptor.type, str(exc)) from exc


def build_value[D](descriptor: ValueDescriptor[D], value: D) -> str:
    try:
        return descriptor.xml_build(value)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise ConversionError(descriptor.name, value, str, str(exc)) from exc
