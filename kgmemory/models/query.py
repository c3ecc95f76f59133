"""
Query expressions for the backing search engine.

Requests are built from these tagged dataclasses and only rendered to the
engine's JSON DSL through to_dict() at the client boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


class QueryExpr:
    """Base class of every query expression."""

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class MatchAll(QueryExpr):

    def to_dict(self) -> Dict[str, Any]:
        return {'match_all': {}}


@dataclass
class Term(QueryExpr):
    field: str
    value: Any
    boost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.boost is None:
            return {'term': {self.field: self.value}}
        return {'term': {self.field: {'value': self.value, 'boost': self.boost}}}


@dataclass
class Terms(QueryExpr):
    field: str
    values: List[Any]

    def to_dict(self) -> Dict[str, Any]:
        return {'terms': {self.field: list(self.values)}}


@dataclass
class Match(QueryExpr):
    field: str
    query: str
    operator: Optional[str] = None
    fuzziness: Optional[str] = None
    boost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'query': self.query}
        if self.operator:
            body['operator'] = self.operator
        if self.fuzziness:
            body['fuzziness'] = self.fuzziness
        if self.boost is not None:
            body['boost'] = self.boost
        return {'match': {self.field: body}}


@dataclass
class MultiMatch(QueryExpr):
    query: str
    fields: List[str]
    fuzziness: Optional[str] = None
    operator: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'query': self.query, 'fields': list(self.fields)}
        if self.fuzziness:
            body['fuzziness'] = self.fuzziness
        if self.operator:
            body['operator'] = self.operator
        return {'multi_match': body}


@dataclass
class QueryString(QueryExpr):
    """Lucene query syntax: boolean operators, fuzzy ~N, proximity, wildcards and boosts."""
    query: str
    fields: List[str]
    default_operator: str = 'OR'
    analyze_wildcard: bool = True
    fuzziness: Optional[str] = 'AUTO'

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'query': self.query,
            'fields': list(self.fields),
            'default_operator': self.default_operator,
            'analyze_wildcard': self.analyze_wildcard
        }
        if self.fuzziness:
            body['fuzziness'] = self.fuzziness
        return {'query_string': body}


@dataclass
class Bool(QueryExpr):
    must: List[QueryExpr] = field(default_factory=list)
    should: List[QueryExpr] = field(default_factory=list)
    filter: List[QueryExpr] = field(default_factory=list)
    must_not: List[QueryExpr] = field(default_factory=list)
    minimum_should_match: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        for clause in ('must', 'should', 'filter', 'must_not'):
            exprs = getattr(self, clause)
            if exprs:
                body[clause] = [expr.to_dict() for expr in exprs]
        if self.minimum_should_match is not None:
            body['minimum_should_match'] = self.minimum_should_match
        return {'bool': body}


@dataclass
class Sort:
    field: str
    order: str = 'desc'

    def to_dict(self) -> Dict[str, Any]:
        return {self.field: {'order': self.order}}


@dataclass
class TermsAgg:
    name: str
    field: str
    size: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return {self.name: {'terms': {'field': self.field, 'size': self.size}}}


@dataclass
class SearchRequest:
    """A complete search body."""
    query: QueryExpr
    size: int = 10
    from_: int = 0
    sort: List[Sort] = field(default_factory=list)
    highlight_fields: List[str] = field(default_factory=list)
    source_excludes: List[str] = field(default_factory=list)
    aggs: List[TermsAgg] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'query': self.query.to_dict(), 'size': self.size}
        if self.from_:
            body['from'] = self.from_
        if self.sort:
            body['sort'] = [s.to_dict() for s in self.sort]
        if self.highlight_fields:
            body['highlight'] = {'fields': {name: {} for name in self.highlight_fields}}
        if self.source_excludes:
            body['_source'] = {'excludes': list(self.source_excludes)}
        if self.aggs:
            aggs: Dict[str, Any] = {}
            for agg in self.aggs:
                aggs.update(agg.to_dict())
            body['aggs'] = aggs
        return body


Query = Union[MatchAll, Term, Terms, Match, MultiMatch, QueryString, Bool]
