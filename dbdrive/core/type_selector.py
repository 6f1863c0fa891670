"""Column type catalog: suggestions, parameter validation and previews."""
import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from dbdrive.core.errors import InvalidTypeParameterError

logger = logging.getLogger(__name__)

_TYPE_PATTERN = re.compile(r"^\s*([A-Za-z_][\w ]*?)\s*(?:\(([^()]*)\))?\s*$")
_INTEGER_PATTERN = re.compile(r"^\s*-?\d+\s*$")

ParameterValue = Union[str, int]
DescriptionFn = Callable[[List[str]], str]
# Returns an error message when a combination of parameters is invalid
ParameterRule = Callable[[List[int]], Optional[str]]


class ColumnTypeParameter(BaseModel):
    """One positional parameter of a parameterized type."""

    name: str
    description: Optional[str] = None
    default: str
    minimum: int = 0
    maximum: int
    required: bool = True


class ColumnTypeSuggestion(BaseModel):
    """A type the editor offers, e.g. ``varchar(length)``."""

    name: str
    parameters: List[ColumnTypeParameter] = []
    description: Union[str, DescriptionFn] = ""
    rule: Optional[ParameterRule] = None

    def describe(self, parameters: Optional[Sequence[ParameterValue]] = None) -> str:
        """Human-readable description, rendered live from parameters when dynamic."""
        if callable(self.description):
            return self.description([str(p) for p in parameters or []])
        return self.description

    def validate_parameters(self, parameters: Sequence[ParameterValue]) -> List[int]:
        """Check parameters are integers within bounds.

        Args:
            parameters: Positional parameter values as typed by the user

        Returns:
            Parsed integer values

        Raises:
            InvalidTypeParameterError: On a missing, extra, malformed or
                out-of-range parameter
        """
        if len(parameters) > len(self.parameters):
            raise InvalidTypeParameterError(
                self.name, "",
                f"expects at most {len(self.parameters)} parameter(s), got {len(parameters)}"
            )

        values = []
        for index, param in enumerate(self.parameters):
            if index >= len(parameters):
                if param.required:
                    raise InvalidTypeParameterError(
                        self.name, param.name, f"{param.name} is required"
                    )
                break

            raw = parameters[index]
            if isinstance(raw, bool) or not _INTEGER_PATTERN.match(str(raw)):
                raise InvalidTypeParameterError(
                    self.name, param.name,
                    f"{param.name} must be an integer between {param.minimum} and {param.maximum}"
                )
            value = int(str(raw))
            if value < param.minimum or value > param.maximum:
                raise InvalidTypeParameterError(
                    self.name, param.name,
                    f"{param.name} must be an integer between {param.minimum} and {param.maximum}"
                )
            values.append(value)

        if self.rule:
            problem = self.rule(values)
            if problem:
                raise InvalidTypeParameterError(self.name, "", problem)

        return values

    def format(self, parameters: Optional[Sequence[ParameterValue]] = None) -> str:
        """Build the type string, falling back to defaults when no parameters are given."""
        if parameters is None:
            parameters = [p.default for p in self.parameters if p.required]
        values = self.validate_parameters(parameters)
        if not values:
            return self.name
        return f"{self.name}({','.join(str(v) for v in values)})"


class ColumnTypeGroup(BaseModel):
    """Suggestions sharing a semantic category such as "String"."""

    name: str
    suggestions: List[ColumnTypeSuggestion] = []


class ColumnTypeSelector(BaseModel):
    """Per-dialect vocabulary of column types.

    ``type`` tells the editor whether types are typed freely ("text") or
    picked from a fixed list ("dropdown").
    """

    type: str = "text"
    type_suggestions: List[ColumnTypeGroup] = []

    def find(self, name: str) -> Optional[ColumnTypeSuggestion]:
        """Case-insensitive lookup of a suggestion by type name."""
        wanted = name.strip().lower()
        for group in self.type_suggestions:
            for suggestion in group.suggestions:
                if suggestion.name.lower() == wanted:
                    return suggestion
        return None

    def format_type(
        self,
        name: str,
        parameters: Optional[Sequence[ParameterValue]] = None
    ) -> str:
        """Validate parameters and build the type string for DDL.

        Types outside the catalog are passed through untouched.
        """
        suggestion = self.find(name)
        if suggestion is None:
            logger.debug("Type %s is not in the catalog, passing through", name)
            if parameters:
                return f"{name}({','.join(str(p) for p in parameters)})"
            return name
        return suggestion.format(parameters)

    def validate_type(self, type_string: str) -> str:
        """Parse a full type string such as ``decimal(10,2)`` and validate it."""
        name, parameters = parse_type(type_string)
        if self.find(name) is None:
            return type_string.strip()
        return self.format_type(name, parameters)

    def describe(self, type_string: str) -> str:
        """Description of a type string, rendered with its parameters."""
        name, parameters = parse_type(type_string)
        suggestion = self.find(name)
        if suggestion is None:
            return ""
        return suggestion.describe(parameters)


def parse_type(type_string: str) -> Tuple[str, List[str]]:
    """Split ``decimal(10, 2)`` into ``("decimal", ["10", "2"])``.

    Strings that do not look like ``name(params)`` come back whole with no
    parameters.
    """
    match = _TYPE_PATTERN.match(type_string or "")
    if not match:
        return (type_string or "").strip(), []
    name = match.group(1).strip()
    raw = match.group(2)
    if raw is None or not raw.strip():
        return name, []
    return name, [p.strip() for p in raw.split(",")]


def scale_within_precision(values: List[int]) -> Optional[str]:
    """Parameter rule for fixed-point types."""
    if len(values) == 2 and values[1] > values[0]:
        return f"scale ({values[1]}) must not exceed precision ({values[0]})"
    return None


def fixed_point_preview(parameters: List[str]) -> str:
    """Describe a fixed-point type with an example of its digit layout."""
    label = "Fixed-point number"
    try:
        precision = int(parameters[0])
        scale = int(parameters[1]) if len(parameters) > 1 else 0
    except (IndexError, ValueError):
        return label

    if precision <= 0 or scale < 0 or scale > precision:
        return label

    digits = ("1234567890" * (precision // 10 + 1))[:precision]
    before = digits[:precision - scale] or "0"
    after = digits[precision - scale:]
    example = f"{before}.{after}" if scale else before
    return (
        f"{label}\n"
        f"Precision {precision}, scale {scale}: {example}\n"
        f"{precision - scale} digit(s) before the point, {scale} after"
    )
