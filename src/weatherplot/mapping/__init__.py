# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import auto
from inspect import Parameter, Signature
from typing import Any, ClassVar, Self, dataclass_transform, overload

from lxml import etree

from weatherplot.python.types import MarkerEnum

from .datamodel import DataAdapterType, build_value, parse_value, resolve_adapter
from .exceptions import ConversionError, MappingError, NameMismatchError, RequiredFieldMissing, UninitializedCollectionError, UnmappedTypeError

__all__ = (  # noqa: RUF022
    'ETreeElement',
    'NameMarker',
    'InheritedName',
    'Lookup',
    'Absent',
    'NameCheck',

    'XMLElement',
    'AnnotatedXMLElement',
    'TypeDescriptor',
    'FieldDescriptor',

    'Attribute',
    'OptionalAttribute',
    'TextValue',
    'DataElement',
    'OptionalDataElement',
    'Element',
    'OptionalElement',
    'MultiElement',
    'WrappedMultiElement',

    'describe',
    'deserialize',
    'deserialize_into',
    'serialize',
    'from_string',
    'to_string',

    'MappingError',
    'UnmappedTypeError',
    'RequiredFieldMissing',
    'ConversionError',
    'UninitializedCollectionError',
    'NameMismatchError',
)


# noinspection PyProtectedMember
type ETreeElement = etree._Element  # noqa: SLF001


class NameMarker(MarkerEnum):
    Inherited = auto()


class Lookup(MarkerEnum):
    Absent = auto()


InheritedName = NameMarker.Inherited  # the element name is provided by the field that holds the element
Absent = Lookup.Absent


class NameCheck(MarkerEnum):
    Strict = auto()   # the element tag must match the expected element name
    Lenient = auto()  # the element was already located by other means, the tag is not checked


class XMLElement:
    # The element name is specified via class parameters:
    #
    # class MyElement(XMLElement, name='my-element'):
    #     ...
    #
    # Using name=InheritedName declares an element whose structure is reused under different
    # names, in which case the name comes from the Element/OptionalElement field holding it.
    # An XMLElement that does not specify a name is abstract and cannot be used as a mapping target.

    _name_: ClassVar[str | NameMarker | None] = None

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    __signature__: ClassVar[Signature] = Signature()

    _all_arguments: ClassVar[frozenset[str]]
    _mandatory_arguments: ClassVar[frozenset[str]]

    def __new__(cls, **kw: object) -> Self:
        if cls._name_ is None:
            raise UnmappedTypeError(cls, 'cannot instantiate abstract class that does not specify a name')
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        for field in self._fields_.values():
            field.initialize(self)
        for name, value in kw.items():
            setattr(self, name, value)

    def __init_subclass__(cls, name: str | NameMarker | None = None, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if name is not None:
            if '_name_' in cls.__dict__ and cls._name_ != name:
                raise TypeError(f'The name specified via class parameter and the "_name_" class attribute are different ({name!r} != {cls._name_!r})')
            cls._name_ = name

        # all the fields on this element (both inherited and locally defined), in declaration order
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        text_values = [field.name for field in fields.values() if isinstance(field, TextValue)]
        if len(text_values) > 1:
            raise TypeError(f'{cls.__qualname__} can have at most one TextValue field, found {len(text_values)}: {", ".join(text_values)}')

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)

    def __repr__(self) -> str:
        values = ', '.join(f'{name}={self.__dict__.get(name)!r}' for name in self._fields_)
        return f'{self.__class__.__qualname__}({values})'

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return all(self.__dict__.get(name) == other.__dict__.get(name) for name in self._fields_)

    @classmethod
    def _new_blank_(cls) -> Self:
        """Create an instance with default values, bypassing the mandatory argument checks"""
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.initialize(instance)
        return instance

    @classmethod
    def from_xml(cls, element: ETreeElement, policy: NameCheck = NameCheck.Strict, *, root_name: str | None = None) -> Self:
        return deserialize(element, cls, policy, root_name=root_name)

    @classmethod
    def from_string(cls, data: str | bytes, policy: NameCheck = NameCheck.Strict, *, root_name: str | None = None) -> Self:
        return from_string(data, cls, policy, root_name=root_name)

    def to_xml(self, root_name: str | None = None) -> ETreeElement:
        return serialize(self, root_name)

    def to_string(self, root_name: str | None = None, *, pretty_print: bool = False, xml_declaration: bool = False, encoding: str | None = None) -> bytes:
        return to_string(self, root_name, pretty_print=pretty_print, xml_declaration=xml_declaration, encoding=encoding)


@dataclass(frozen=True, slots=True)
class TypeDescriptor[E: XMLElement]:
    type: type[E]
    name: str | NameMarker
    fields: tuple['FieldDescriptor', ...]

    @property
    def inherits_name(self) -> bool:
        return self.name is InheritedName

    def resolve_name(self, root_name: str | None = None) -> str | None:
        """The element name for this call, or None if it is inherited and no root name was given"""
        if root_name is not None:
            return root_name
        return None if self.name is InheritedName else self.name  # type: ignore[return-value]


class FieldDescriptor[F](ABC):
    name: str | None
    type: type[F]

    kind: ClassVar[str]
    optional: ClassVar[bool] = False

    xml_name: str

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type)

    def __set_name__(self, owner: type[XMLElement], name: str) -> None:
        if not issubclass(owner, XMLElement):  # static type analysis does not catch this
            raise TypeError(f'Can only use {self.__class__.__qualname__} descriptors on XMLElement objects')
        if self.name is None:
            self.name = name
            self.xml_name = self.xml_name or name
        elif name != self.name:
            raise TypeError(f'cannot assign the same {self.__class__.__name__} descriptor to two different names: {self.name} and {name}')

    @overload
    def __get__(self, instance: None, owner: type[XMLElement]) -> Self: ...

    @overload
    def __get__(self, instance: XMLElement, owner: type[XMLElement] | None = None) -> F: ...

    def __get__(self, instance: XMLElement | None, owner: type[XMLElement] | None = None) -> Self | F:
        if instance is None:
            return self
        try:
            return instance.__dict__[self.name]
        except KeyError as exc:
            raise AttributeError(f'mandatory {self.kind} {self.name!r} is missing') from exc

    def __delete__(self, instance: XMLElement) -> None:
        raise AttributeError(f'mandatory {self.kind} {self.name!r} cannot be deleted')

    def initialize(self, instance: XMLElement) -> None:
        """Set up the initial value of the field for a new instance"""

    def value_of(self, instance: XMLElement) -> Any:
        return instance.__dict__.get(self.name)

    def commit(self, instance: XMLElement, value: Any) -> None:
        """Store a value resolved from XML into the instance"""
        instance.__dict__[self.name] = value

    @abstractmethod
    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> F | Lookup:
        """Resolve the field value from the etree element, or return Absent if the element does not provide it"""
        raise NotImplementedError

    @abstractmethod
    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        """Add the instance's field value to the etree element"""
        raise NotImplementedError


class DataFieldDescriptor[D](FieldDescriptor[D], ABC):
    """A field that holds a scalar value converted to and from text"""

    adapter: DataAdapterType[D] | None

    xml_build: Callable[[D], str]
    xml_parse: Callable[[str], D]

    def __init__(self, data_type: type[D], /, *, name: str | None = None, adapter: DataAdapterType[D] | None = None) -> None:
        self.name = None
        self.xml_name = name or ''
        self.type = data_type
        self.adapter = adapter

        resolved_adapter = resolve_adapter(data_type, adapter)
        if resolved_adapter is not None:
            self.xml_parse = resolved_adapter.xml_parse
            self.xml_build = resolved_adapter.xml_build
        else:
            self.xml_parse = data_type
            self.xml_build = str

    def __repr__(self) -> str:
        name = self.xml_name if self.xml_name != self.name else None
        adapter_name = self.adapter.__qualname__ if self.adapter else None
        return f'{self.__class__.__name__}({self.type.__qualname__}, {name=}, adapter={adapter_name})'

    def __set__(self, instance: XMLElement, value: D) -> None:
        if not isinstance(value, self.type):
            raise TypeError(f'the {self.name!r} {self.kind} must be of type {self.type.__qualname__}')
        instance.__dict__[self.name] = value


class OptionalDataFieldDescriptor[D](DataFieldDescriptor[D], ABC):
    optional = True

    default: D | None

    def __init__(self, data_type: type[D], /, *, name: str | None = None, default: D | None = None, adapter: DataAdapterType[D] | None = None) -> None:
        super().__init__(data_type, name=name, adapter=adapter)
        self.default = default

    def __repr__(self) -> str:
        name = self.xml_name if self.xml_name != self.name else None
        adapter_name = self.adapter.__qualname__ if self.adapter else None
        return f'{self.__class__.__name__}({self.type.__qualname__}, {name=}, default={self.default!r}, adapter={adapter_name})'

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=self.default)

    def __set__(self, instance: XMLElement, value: D | None) -> None:
        if value is not None and not isinstance(value, self.type):
            raise TypeError(f'the {self.name!r} {self.kind} must be of type {self.type.__qualname__}')
        instance.__dict__[self.name] = value

    def __delete__(self, instance: XMLElement) -> None:
        instance.__dict__[self.name] = self.default

    def initialize(self, instance: XMLElement) -> None:
        instance.__dict__[self.name] = self.default


class Attribute[D](DataFieldDescriptor[D]):
    kind = 'attribute'

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> D | Lookup:
        text = element.get(self.xml_name)
        if text is None:
            return Absent
        return parse_value(self, text)

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        value = self.value_of(instance)
        if value is not None:
            element.set(self.xml_name, build_value(self, value))


class OptionalAttribute[D](OptionalDataFieldDescriptor[D], Attribute[D]):
    pass


class TextValue[D](DataFieldDescriptor[D]):
    """A descriptor for the text content of the element itself"""

    kind = 'text value'

    def __init__(self, data_type: type[D], /, *, adapter: DataAdapterType[D] | None = None) -> None:
        super().__init__(data_type, adapter=adapter)

    def __repr__(self) -> str:
        adapter_name = self.adapter.__qualname__ if self.adapter else None
        return f'{self.__class__.__name__}({self.type.__qualname__}, adapter={adapter_name})'

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> D:
        return parse_value(self, element.text or '')

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        value = self.value_of(instance)
        if value is not None:
            element.text = build_value(self, value)


class DataElement[D](DataFieldDescriptor[D]):
    """A descriptor for the text content of a named child element"""

    kind = 'element'

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> D | Lookup:
        child = next(element.iterdescendants(self.xml_name), None)
        if child is None:
            return Absent
        return parse_value(self, child.text or '')

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        value = self.value_of(instance)
        if value is not None:
            etree.SubElement(element, self.xml_name).text = build_value(self, value)


class OptionalDataElement[D](OptionalDataFieldDescriptor[D], DataElement[D]):
    pass


def _element_type_name(element_type: type) -> str | NameMarker:
    if not (isinstance(element_type, type) and issubclass(element_type, XMLElement)):
        raise UnmappedTypeError(element_type, 'element type must be a subclass of XMLElement')
    if element_type._name_ is None:
        raise UnmappedTypeError(element_type, 'it must specify a name to be usable as element type')
    return element_type._name_


class Element[E: XMLElement](FieldDescriptor[E]):
    """
    A descriptor for a single child element that maps to another XMLElement.

    The child is looked up by the field's XML name, which defaults to the
    element type's name. Element types declared with name=InheritedName
    take their name from the field, so the name must be given in that case.

    The field's XML name is also used when serializing, even when the element
    type has a name of its own, so that the written child is found again by
    the same field when it is read back.
    """

    kind = 'element'

    def __init__(self, element_type: type[E], /, *, name: str | None = None) -> None:
        type_name = _element_type_name(element_type)
        if type_name is InheritedName and name is None:
            raise UnmappedTypeError(element_type, 'it inherits its name, so the field must specify one')
        self.name = None
        self.type = element_type
        self.xml_name = name or type_name  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.type.__qualname__}, name={self.xml_name!r})'

    def __set__(self, instance: XMLElement, value: E) -> None:
        # to consistently reject value=None, check type before anything else
        if type(value) is not self.type:
            raise TypeError(f'the {self.name!r} element must be of type {self.type.__qualname__}')
        instance.__dict__[self.name] = value

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> E | Lookup:
        child = next(element.iterdescendants(self.xml_name), None)
        if child is None:
            return Absent
        descriptor = describe(self.type)
        if descriptor.inherits_name:
            return _deserialize(child, descriptor, policy, root_name=self.xml_name)
        if descriptor.name != self.xml_name:
            return _deserialize(child, descriptor, NameCheck.Lenient, root_name=None)
        return _deserialize(child, descriptor, policy, root_name=None)

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        value = self.value_of(instance)
        if value is not None:
            element.append(_serialize(value, root_name=self.xml_name))


class OptionalElement[E: XMLElement](Element[E]):
    optional = True

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=None)

    def __set__(self, instance: XMLElement, value: E | None) -> None:
        if value is not None and type(value) is not self.type:
            raise TypeError(f'the {self.name!r} element must be of type {self.type.__qualname__}')
        instance.__dict__[self.name] = value

    def __delete__(self, instance: XMLElement) -> None:
        instance.__dict__[self.name] = None

    def initialize(self, instance: XMLElement) -> None:
        instance.__dict__[self.name] = None


class ListFieldDescriptor[E: XMLElement](FieldDescriptor[list[E]], ABC):
    """
    A field that holds a list of XMLElements.

    The list container is created together with the instance and entries read
    from XML are appended to it. Assigning None removes the container, after
    which the field cannot be used with XML until a list is assigned again.
    """

    kind = 'element list'

    item_type: type[E]
    item_name: str

    def __init__(self, element_type: type[E], /, *, name: str | None = None) -> None:
        type_name = _element_type_name(element_type)
        if type_name is InheritedName:
            raise UnmappedTypeError(element_type, 'list entries must specify their own name')
        self.name = None
        self.type = list
        self.item_type = element_type
        self.item_name = type_name  # type: ignore[assignment]
        self.xml_name = name or ''

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=Iterable[self.item_type], default=())  # type: ignore[name-defined]

    def __set__(self, instance: XMLElement, value: Iterable[E] | None) -> None:
        if value is None:
            instance.__dict__[self.name] = None
            return
        elements = list(value)
        if not all(type(element) is self.item_type for element in elements):
            raise TypeError(f'the {self.name!r} elements must be of type {self.item_type.__qualname__}')
        instance.__dict__[self.name] = elements

    def initialize(self, instance: XMLElement) -> None:
        instance.__dict__[self.name] = []

    def container(self, instance: XMLElement) -> list[E]:
        elements = instance.__dict__.get(self.name)
        if elements is None:
            raise UninitializedCollectionError(self.name, type(instance))  # type: ignore[arg-type]
        return elements

    def commit(self, instance: XMLElement, value: list[E]) -> None:
        self.container(instance).extend(value)

    def _build_items(self, instance: XMLElement, parent: ETreeElement) -> None:
        for item in self.container(instance):
            if type(item) is not self.item_type:
                raise TypeError(f'the {self.name!r} elements must be of type {self.item_type.__qualname__}')
            parent.append(_serialize(item, root_name=None))


class MultiElement[E: XMLElement](ListFieldDescriptor[E]):
    """
    A descriptor for the elements of a given type found anywhere below the element.

    The whole subtree is scanned and the entries are collected in document order.
    """

    optional = True

    def __init__(self, element_type: type[E], /) -> None:
        super().__init__(element_type)

    def __set_name__(self, owner: type[XMLElement], name: str) -> None:
        super().__set_name__(owner, name)
        self.xml_name = self.item_name

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.item_type.__qualname__})'

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> list[E]:
        self.container(instance)
        descriptor = describe(self.item_type)
        return [_deserialize(child, descriptor, policy, root_name=None) for child in element.iterdescendants(self.item_name)]

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        self._build_items(instance, element)


class WrappedMultiElement[E: XMLElement](ListFieldDescriptor[E]):
    """
    A descriptor for a list of elements kept inside a named wrapper element.

    Only the direct children of the wrapper that carry the element type's name
    become list entries. The wrapper is always written out, even when empty.
    """

    def __init__(self, element_type: type[E], /, *, name: str, optional: bool = True) -> None:
        if not name:
            raise TypeError('the wrapper element name must be specified')
        super().__init__(element_type, name=name)
        self.optional = optional  # type: ignore[misc]

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.item_type.__qualname__}, name={self.xml_name!r}, optional={self.optional!r})'

    def from_xml(self, instance: XMLElement, element: ETreeElement, policy: NameCheck) -> list[E] | Lookup:
        self.container(instance)
        wrapper = next(element.iterdescendants(self.xml_name), None)
        if wrapper is None:
            return Absent
        descriptor = describe(self.item_type)
        return [_deserialize(child, descriptor, policy, root_name=None) for child in wrapper if child.tag == self.item_name]

    def to_xml(self, instance: XMLElement, element: ETreeElement) -> None:
        self.container(instance)
        self._build_items(instance, etree.SubElement(element, self.xml_name))


field_specifiers = (Attribute, OptionalAttribute, TextValue, DataElement, OptionalDataElement, Element, OptionalElement, MultiElement, WrappedMultiElement)


@dataclass_transform(kw_only_default=True, field_specifiers=field_specifiers)  # type: ignore[misc]
class AnnotatedXMLElement(XMLElement):
    """
    A static type checker friendly variant of XMLElement.

    Subclassing AnnotatedXMLElement allows static type checkers to identify the
    names and types of the arguments used to create instances, at the cost of
    being more verbose and redundant with the element definitions.

    The element definition needs to include both an annotation and the descriptor
    definition for the element (same for attributes):

      country: Attribute[str] = Attribute(str)
      locations: MultiElement[Location] = MultiElement(Location)
    """


del field_specifiers


def describe[E: XMLElement](model_type: type[E]) -> TypeDescriptor[E]:
    """Return the element name and the ordered field descriptors of a mapped type"""
    if not (isinstance(model_type, type) and issubclass(model_type, XMLElement)):
        raise UnmappedTypeError(model_type, 'not a subclass of XMLElement')
    if model_type._name_ is None:
        raise UnmappedTypeError(model_type, 'it does not specify a name')
    return TypeDescriptor(model_type, model_type._name_, tuple(model_type._fields_.values()))


def _deserialize[E: XMLElement](element: ETreeElement, descriptor: TypeDescriptor[E], policy: NameCheck, root_name: str | None, instance: E | None = None) -> E:
    if policy is NameCheck.Strict:
        expected_name = descriptor.resolve_name(root_name)
        if expected_name is None:
            raise UnmappedTypeError(descriptor.type, 'it inherits its name and no root name was provided for the strict name check')
        if element.tag != expected_name:
            raise NameMismatchError(expected_name, element.tag)

    if instance is None:
        instance = descriptor.type._new_blank_()

    # resolve all the fields before touching the instance, so that it is only updated if everything succeeds
    resolved = []
    for field in descriptor.fields:
        value = field.from_xml(instance, element, policy)
        if value is Absent:
            if not field.optional:
                raise RequiredFieldMissing(field.name, field.kind, field.xml_name, element.tag)  # type: ignore[arg-type]
            continue
        resolved.append((field, value))

    for field, value in resolved:
        field.commit(instance, value)

    return instance


def deserialize[E: XMLElement](element: ETreeElement, target_type: type[E], policy: NameCheck = NameCheck.Strict, *, root_name: str | None = None) -> E:
    """
    Create a new target_type instance from the etree element.

    Under the strict policy the element tag must match the type's element name
    (or root_name when given). Raises a MappingError subclass on failure, in
    which case no instance is produced.
    """
    return _deserialize(element, describe(target_type), policy, root_name)


def deserialize_into[E: XMLElement](element: ETreeElement, instance: E, policy: NameCheck = NameCheck.Strict, *, root_name: str | None = None) -> E:
    """
    Populate an existing instance from the etree element.

    Fields that are absent from the element keep their current values and list
    entries are appended to the instance's existing list containers. On failure
    the instance is left unchanged.
    """
    return _deserialize(element, describe(type(instance)), policy, root_name, instance)


def _serialize(instance: XMLElement, root_name: str | None) -> ETreeElement:
    descriptor = describe(type(instance))
    name = descriptor.resolve_name(root_name)
    if name is None:
        raise UnmappedTypeError(descriptor.type, 'it inherits its name and no root name was provided')
    element = etree.Element(name)
    for field in descriptor.fields:
        field.to_xml(instance, element)
    return element


def serialize(instance: XMLElement, root_name: str | None = None) -> ETreeElement:
    """Build an etree element from the instance, named root_name if given, otherwise after the instance type"""
    return _serialize(instance, root_name)


def from_string[E: XMLElement](data: str | bytes, target_type: type[E], policy: NameCheck = NameCheck.Strict, *, root_name: str | None = None) -> E:
    if isinstance(data, str):
        data = data.encode()
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    return deserialize(etree.fromstring(data, parser), target_type, policy, root_name=root_name)


def to_string(instance: XMLElement, root_name: str | None = None, *, pretty_print: bool = False, xml_declaration: bool = False, encoding: str | None = None) -> bytes:
    if xml_declaration and encoding is None:
        encoding = 'UTF-8'
    return etree.tostring(serialize(instance, root_name), pretty_print=pretty_print, xml_declaration=xml_declaration, encoding=encoding)
