"""URI templates (RFC 6570) used to match resource URIs."""

import re
from dataclasses import dataclass
from urllib.parse import unquote


@dataclass(frozen=True)
class _Operator:
    first: str
    sep: str
    named: bool
    allow_reserved: bool
    empty_with_equals: bool = False


_SIMPLE = _Operator("", ",", False, False)
_OPERATORS = {
    "+": _Operator("", ",", False, True),
    "#": _Operator("#", ",", False, True),
    ".": _Operator(".", ".", False, False),
    "/": _Operator("/", "/", False, False),
    ";": _Operator(";", ";", True, False),
    "?": _Operator("?", "&", True, False, True),
    "&": _Operator("&", "&", True, False, True),
}
_RESERVED_OPERATORS = frozenset("=,!@|")

_EXPRESSION = re.compile(r"\{([^{}]*)\}")
_VARCHAR = r"(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2})"
_VARSPEC = re.compile(rf"({_VARCHAR}(?:\.?{_VARCHAR})*)(?::([1-9][0-9]{{0,3}})|(\*))?")

_UNRESERVED = r"A-Za-z0-9\-._~"
_RESERVED = r":/?#\[\]@!$&'()*+,;="
_PCT = r"%[0-9A-Fa-f]{2}"


def _value_pattern(operator: _Operator, prefix: str | None, explode: bool) -> str:
    chars = _UNRESERVED + (_RESERVED if operator.allow_reserved else "")
    if explode:
        chars += re.escape(operator.sep) + ("=" if operator.named else "")
    unit = f"(?:[{chars}]|{_PCT})"
    return unit + (f"{{0,{prefix}}}" if prefix else "*")


class URITemplate:
    """A parsed URI template that can test and extract variables from URIs."""

    def __init__(self, template):
        self.template = template
        self._names: list[str] = []
        pattern = []
        for position, piece in enumerate(_EXPRESSION.split(template)):
            if position % 2 == 0:
                if "{" in piece or "}" in piece:
                    raise ValueError(f"unbalanced braces in URI template {template!r}")
                pattern.append(re.escape(piece))
            else:
                pattern.append(self._compile_expression(piece))
        self._regex = re.compile("".join(pattern))

    def _compile_expression(self, expression: str) -> str:
        if not expression:
            raise ValueError(f"empty expression in URI template {self.template!r}")
        operator = _OPERATORS.get(expression[0])
        if operator is None:
            if expression[0] in _RESERVED_OPERATORS:
                raise ValueError(f"unsupported operator {expression[0]!r} in {self.template!r}")
            operator, varlist = _SIMPLE, expression
        else:
            varlist = expression[1:]

        branches = []
        for position, spec in enumerate(varlist.split(",")):
            match = _VARSPEC.fullmatch(spec)
            if match is None:
                raise ValueError(f"invalid variable {spec!r} in URI template {self.template!r}")
            name, prefix, explode = match.groups()
            index = len(self._names)
            self._names.append(name)
            value = f"(?P<v{index}>{_value_pattern(operator, prefix, bool(explode))})"
            if operator.named and not explode:
                key = re.escape(name)
                body = f"{key}={value}" if operator.empty_with_equals else f"{key}(?:={value})?"
            else:
                body = value
            lead = operator.first if position == 0 else operator.sep
            branches.append((index, re.escape(lead) + body))

        nested = ""
        for index, branch in reversed(branches):
            nested = f"(?:(?P<m{index}>{branch}){nested})?"
        return nested

    @property
    def regex(self) -> re.Pattern:
        """The compiled pattern that whole URIs must match."""
        return self._regex

    @property
    def varnames(self) -> list[str]:
        """Variable names in the order they appear."""
        return list(self._names)

    def matches(self, uri) -> bool:
        """Return True if the whole URI fits the template."""
        return self._regex.fullmatch(uri) is not None

    def match(self, uri) -> dict[str, str] | None:
        """Return the decoded variables of a matching URI, or None."""
        found = self._regex.fullmatch(uri)
        if found is None:
            return None
        values = {}
        for index, name in enumerate(self._names):
            if found.group(f"m{index}") is None:
                continue
            values[name] = unquote(found.group(f"v{index}") or "")
        return values

    def __str__(self) -> str:
        return self.template

    def __repr__(self) -> str:
        return f"URITemplate({self.template!r})"