"""
Model descriptors, populate specs and query parameter parsing.

These are the transient values the CRUD service works with. None of them
touch the store; they only describe what to read or write.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from utils.exceptions import ValidationError

DEFAULT_PAGE_SIZE = 10

# Query string keys consumed by pagination, sorting and field selection.
RESERVED_QUERY_KEYS = frozenset({'page', 'limit', 'page_size', 'sort', 'fields'})

FILTER_OPERATORS = frozenset({
    '$eq', '$ne', '$gt', '$gte', '$lt', '$lte',
    '$in', '$exists', '$contains', '$begins_with',
})
LOGICAL_OPERATORS = frozenset({'$and', '$or'})
UPDATE_OPERATORS = frozenset({'$set', '$unset', '$inc'})

# Bracket operators accepted in query strings, e.g. ``age[gte]=18``.
QUERY_OPERATORS = frozenset({'gt', 'gte', 'lt', 'lte', 'ne'})


def split_fields(spec: Union[str, Iterable[str], None]) -> List[str]:
    """Split a select string (``"a b"`` or ``"a,b"``) or iterable into names."""
    if not spec:
        return []
    if isinstance(spec, str):
        spec = spec.replace(',', ' ').split()
    return [name.strip() for name in spec if name and name.strip()]


@dataclass(frozen=True)
class Projection:
    """Field inclusion/exclusion applied to documents before they are returned."""

    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, spec: Union[str, Iterable[str], None]) -> "Projection":
        """Parse a select string where ``-field`` excludes and ``field`` includes."""
        include: List[str] = []
        exclude: List[str] = []
        for name in split_fields(spec):
            if name.startswith('-'):
                if name[1:]:
                    exclude.append(name[1:])
            else:
                include.append(name)
        return cls(tuple(include), tuple(exclude))

    def merge(self, other: "Projection") -> "Projection":
        return Projection(
            tuple(dict.fromkeys(self.include + other.include)),
            tuple(dict.fromkeys(self.exclude + other.exclude)),
        )

    def apply(self, document: Optional[Dict[str, Any]], key_attribute: Optional[str] = None):
        """Return a projected copy of ``document``. Exclusions always win."""
        if document is None:
            return None
        if self.include:
            keep = set(self.include)
            if key_attribute:
                keep.add(key_attribute)
            projected = {k: v for k, v in document.items() if k in keep}
        else:
            projected = dict(document)
        for name in self.exclude:
            projected.pop(name, None)
        return projected


@dataclass(eq=False)
class ModelDescriptor:
    """
    Identifies a collection and the fields never returned from it.

    Attributes:
        table_name: Collection (DynamoDB table) name, without any deployment prefix
        exempt: Fields to strip from returned documents, e.g. ``"-password"``
        key_attribute: Partition key attribute of the collection
        refs: Reference field path -> descriptor of the referenced collection
    """

    table_name: str
    exempt: Union[str, Iterable[str]] = ''
    key_attribute: str = 'id'
    refs: Dict[str, "ModelDescriptor"] = field(default_factory=dict)

    @property
    def exempt_fields(self) -> Tuple[str, ...]:
        return tuple(name.lstrip('-') for name in split_fields(self.exempt) if name.lstrip('-'))

    @property
    def exempt_projection(self) -> Projection:
        return Projection(exclude=self.exempt_fields)

    def mask(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Strip exempt fields from a document."""
        return self.exempt_projection.apply(document)


@dataclass(frozen=True)
class PopulateField:
    """
    A relation to resolve on read.

    ``path`` names the reference field, ``fields`` selects what to keep from
    the referenced document and ``second_layer_populate`` resolves one more
    relation inside it.
    """

    path: str
    fields: str = ''
    second_layer_populate: Optional["PopulateField"] = None

    @classmethod
    def from_value(cls, value: Any) -> "PopulateField":
        """
        Build a populate spec from a path string, a mapping or a PopulateField.

        Mappings may use ``model``/``fields``/``second_layer_populate`` or
        ``path``/``select``/``populate``.
        """
        if isinstance(value, PopulateField):
            return value
        if isinstance(value, str) and value.strip():
            return cls(path=value.strip())
        if isinstance(value, Mapping):
            path = value.get('model') or value.get('path')
            if not path or not isinstance(path, str):
                raise ValidationError('Populate spec requires a path', field='populate', value=value)
            fields = value.get('fields', value.get('select')) or ''
            if not isinstance(fields, str):
                fields = ' '.join(split_fields(fields))
            nested = value.get('second_layer_populate', value.get('populate'))
            return cls(
                path=path,
                fields=fields,
                second_layer_populate=cls.from_value(nested) if nested else None,
            )
        raise ValidationError('Malformed populate spec', field='populate', value=value)

    @property
    def projection(self) -> Projection:
        return Projection.parse(self.fields)


def normalize_populate(populate: Any) -> List[PopulateField]:
    """Accept ``None``, a single spec or a sequence of specs."""
    if not populate:
        return []
    if isinstance(populate, (list, tuple)):
        return [PopulateField.from_value(item) for item in populate if item]
    return [PopulateField.from_value(populate)]


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class Pagination:
    """A page window. ``page`` is 1-based."""

    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_query(cls, query: Mapping[str, Any], default_page_size: int = DEFAULT_PAGE_SIZE) -> "Pagination":
        """Absent, invalid, zero or negative values fall back to the defaults."""
        page = _positive_int(query.get('page')) or 1
        limit = (
            _positive_int(query.get('limit'))
            or _positive_int(query.get('page_size'))
            or default_page_size
        )
        return cls(page=page, limit=limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def _coerce(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class QueryParams:
    """A parsed request query bag."""

    pagination: Pagination
    sort: Tuple[Tuple[str, bool], ...] = ()
    projection: Projection = Projection()
    filter: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, query: Optional[Mapping[str, Any]], default_page_size: int = DEFAULT_PAGE_SIZE) -> "QueryParams":
        """
        Parse pagination, sort, field selection and query-derived filters.

        ``sort=-age,name`` sorts by age descending then name. Keys outside the
        reserved set become filters: ``status=active`` is an equality on the raw
        string and ``age[gte]=18`` a comparison with the value coerced to a number.
        """
        query = dict(query or {})
        sort = tuple(
            (name[1:], True) if name.startswith('-') else (name, False)
            for name in split_fields(query.get('sort'))
            if name.lstrip('-')
        )
        filters: Dict[str, Any] = {}
        for key, value in query.items():
            if key in RESERVED_QUERY_KEYS or value is None:
                continue
            if key.endswith(']') and '[' in key:
                name, _, op = key[:-1].partition('[')
                if op not in QUERY_OPERATORS or not name:
                    raise ValidationError(f'Unsupported query operator: {key}', field=key, value=value)
                filters.setdefault(name, {})
                if not isinstance(filters[name], dict):
                    filters[name] = {'$eq': filters[name]}
                filters[name][f'${op}'] = _coerce(value)
            elif isinstance(filters.get(key), dict):
                filters[key]['$eq'] = value
            else:
                filters[key] = value
        return cls(
            pagination=Pagination.from_query(query, default_page_size),
            sort=sort,
            projection=Projection.parse(query.get('fields')),
            filter=filters,
        )


def combine_filters(*filters: Any) -> Any:
    """AND together the non-empty filters, passing a lone filter through as-is."""
    present = [f for f in filters if f is not None and not (isinstance(f, Mapping) and not f)]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return {'$and': present}


def validate_model(model: Any) -> ModelDescriptor:
    if not isinstance(model, ModelDescriptor):
        raise ValidationError('A model descriptor is required', field='model', value=model)
    if not model.table_name or not isinstance(model.table_name, str):
        raise ValidationError('Model descriptor is missing a table name', field='table_name')
    if not model.key_attribute or not isinstance(model.key_attribute, str):
        raise ValidationError('Model descriptor is missing a key attribute', field='key_attribute')
    return model


def validate_models(model: Any) -> List[ModelDescriptor]:
    """Accept one descriptor or a non-empty sequence of them."""
    if isinstance(model, (list, tuple)):
        if not model:
            raise ValidationError('At least one model descriptor is required', field='model')
        return [validate_model(m) for m in model]
    return [validate_model(model)]


def validate_filter(expression: Any, name: str = 'filter') -> Any:
    """
    Check a filter before it reaches the store.

    Mappings are checked for known operators; objects exposing
    ``get_expression`` (boto3 conditions) pass through untouched.
    """
    if expression is None or hasattr(expression, 'get_expression'):
        return expression
    if not isinstance(expression, Mapping):
        raise ValidationError(f'{name} must be a mapping or a store condition', field=name, value=expression)
    for key, value in expression.items():
        if not isinstance(key, str):
            raise ValidationError(f'{name} keys must be field names', field=name, value=key)
        if key in LOGICAL_OPERATORS:
            if not isinstance(value, (list, tuple)) or not value:
                raise ValidationError(f'{key} expects a non-empty list of filters', field=name, value=value)
            for sub in value:
                validate_filter(sub, name)
        elif key.startswith('$'):
            raise ValidationError(f'Unsupported filter operator: {key}', field=name, value=key)
        elif isinstance(value, Mapping) and any(str(k).startswith('$') for k in value):
            unknown = [k for k in value if k not in FILTER_OPERATORS]
            if unknown:
                raise ValidationError(f'Unsupported filter operator: {unknown[0]}', field=key, value=value)
    return expression


def validate_update(update: Any, key_attribute: str) -> Mapping[str, Any]:
    if not isinstance(update, Mapping) or not update:
        raise ValidationError('Update expression must be a non-empty mapping', field='data', value=update)
    operators = [k for k in update if str(k).startswith('$')]
    if operators and len(operators) != len(update):
        raise ValidationError('Cannot mix update operators and plain fields', field='data')
    if not operators:
        touched = list(update)
    else:
        touched = []
        for op in operators:
            if op not in UPDATE_OPERATORS:
                raise ValidationError(f'Unsupported update operator: {op}', field='data', value=op)
            body = update[op]
            if op == '$unset' and isinstance(body, (list, tuple)):
                touched.extend(body)
            elif isinstance(body, Mapping):
                touched.extend(body)
            else:
                raise ValidationError(f'{op} expects a mapping', field='data', value=body)
    if not touched:
        raise ValidationError('Update expression does not name any field', field='data', value=update)
    if key_attribute in touched:
        raise ValidationError('The key attribute cannot be updated', field=key_attribute)
    return update
