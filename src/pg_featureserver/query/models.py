"""
Pydantic models shared by the query pipeline and the GeoServices routes.
These models describe query semantics, not wire formats.
"""

from typing import Literal, Optional, Union

import pyarrow as pa
from pydantic import BaseModel, Field

from .errors import InvariantViolation

ALL_FIELDS = "*"
GEOMETRY_PAYLOAD = "geojson_payload"
OBJECT_ID_FIELD = "OBJECTID"


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


class QueryParams(BaseModel):
    """Parsed FeatureServer query parameters."""

    layer_id: int

    # Fields: "*" or explicit names in request order
    out_fields: Union[Literal["*"], list[str]] = ALL_FIELDS
    return_geometry: bool = True

    # Attribute filter, raw from the client
    where: str = ""

    # Spatial: xmin, ymin, xmax, ymax. Length is checked by the builder.
    extent: Optional[list[float]] = None
    extent_sr: Optional[int] = None  # envelope wkid, falls back to out_sr
    out_sr: int = 28992

    # Generalization (maxAllowableOffset)
    max_allowable_offset: Optional[float] = None

    # Pagination
    offset: int = 0
    limit: int = 1000


class FieldDescriptor(BaseModel):
    model_config = {"frozen": True}

    name: str
    type: str = "esriFieldTypeString"
    alias: Optional[str] = None
    length: Optional[int] = None

    @property
    def label(self) -> str:
        return self.alias or self.name


class TableRef(BaseModel):
    model_config = {"frozen": True, "populate_by_name": True}

    schema_name: str = Field(alias="schema")
    name: str

    def sql(self) -> str:
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(self.name)}"


class LayerMetadata(BaseModel):
    """Static description of one FeatureServer layer."""

    model_config = {"frozen": True}

    id: int
    name: str
    table: TableRef
    geometry_type: Literal["point", "polygon"]
    geometry_column: str = "SHAPE"
    srid: int = 28992
    fields: tuple[FieldDescriptor, ...]
    default_fields: tuple[str, ...] = ()
    extent: Optional[tuple[float, float, float, float]] = None

    def field(self, name: str) -> Optional[FieldDescriptor]:
        """Case-insensitive field lookup."""
        wanted = name.lower()
        for f in self.fields:
            if f.name.lower() == wanted:
                return f
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def output_fields(self) -> list[str]:
        """Field list used when all fields are requested."""
        return list(self.default_fields) or self.field_names


class SqlQuery(BaseModel):
    """A built statement plus the columns the executor must collect."""

    model_config = {"frozen": True}

    text: str
    params: tuple = ()
    fields: tuple[str, ...]
    geometry_column: str = GEOMETRY_PAYLOAD

    @property
    def attribute_fields(self) -> list[str]:
        return [f for f in self.fields if f != self.geometry_column]


class ColumnTable(BaseModel):
    """Column-major query result.

    Every column holds one string (or None) per row, in result-set
    order; index i in each column is the same row.
    """

    model_config = {"arbitrary_types_allowed": True}

    columns: pa.Table
    geometry_column: str = GEOMETRY_PAYLOAD

    @classmethod
    def from_columns(
        cls, data: dict[str, list], geometry_column: str = GEOMETRY_PAYLOAD
    ) -> "ColumnTable":
        if geometry_column not in data:
            raise InvariantViolation(
                f"Result has no geometry payload column '{geometry_column}'"
            )
        _check_lengths({name: len(values) for name, values in data.items()})
        table = pa.table(
            {name: pa.array(values, type=pa.string()) for name, values in data.items()}
        )
        return cls(columns=table, geometry_column=geometry_column)

    @classmethod
    def empty(cls, fields: list[str], geometry_column: str = GEOMETRY_PAYLOAD):
        data = {name: [] for name in fields}
        data[geometry_column] = []
        return cls.from_columns(data, geometry_column)

    @property
    def num_rows(self) -> int:
        return len(self.columns.column(self.geometry_column))

    @property
    def field_names(self) -> list[str]:
        """Attribute column names, payload excluded, in column order."""
        return [n for n in self.columns.column_names if n != self.geometry_column]

    def check_row_count(self) -> int:
        """Return the row count after checking all columns agree on it."""
        _check_lengths(
            {name: len(self.columns.column(name)) for name in self.columns.column_names}
        )
        return self.num_rows

    def to_pydict(self) -> dict[str, list]:
        return self.columns.to_pydict()


def _check_lengths(lengths: dict[str, int]):
    if len(set(lengths.values())) > 1:
        raise InvariantViolation(
            "Result columns have different lengths",
            details=[f"{name}: {n}" for name, n in lengths.items()],
        )
