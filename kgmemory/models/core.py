"""
Core data models for the zone-aware knowledge graph.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_ZONE = 'default'
PLACEHOLDER_ENTITY_TYPE = 'unknown'
DEFAULT_RELEVANCE_SCORE = 1.0
MIN_RELEVANCE_SCORE = 0.01
MAX_RELEVANCE_SCORE = 25.0


@dataclass
class Entity:
    """A named node inside one zone.

    relevance_score is None on incoming entities that do not carry one; the store
    then preserves the existing score or falls back to the default.
    """
    name: str
    entity_type: str = PLACEHOLDER_ENTITY_TYPE
    observations: List[str] = field(default_factory=list)
    relevance_score: Optional[float] = None
    read_count: int = 0
    last_read: Optional[str] = None
    last_write: Optional[str] = None
    zone: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            'type': 'entity',
            'name': self.name,
            'entityType': self.entity_type,
            'observations': list(self.observations),
            'relevanceScore': self.relevance_score if self.relevance_score is not None else DEFAULT_RELEVANCE_SCORE,
            'readCount': self.read_count,
            'lastRead': self.last_read,
            'lastWrite': self.last_write,
            'zone': self.zone
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Entity':
        score = doc.get('relevanceScore')
        return cls(name=doc.get('name', ''),
                   entity_type=doc.get('entityType', PLACEHOLDER_ENTITY_TYPE),
                   observations=list(doc.get('observations') or []),
                   relevance_score=float(score) if score is not None else None,
                   read_count=int(doc.get('readCount') or 0),
                   last_read=doc.get('lastRead'),
                   last_write=doc.get('lastWrite'),
                   zone=doc.get('zone'))


@dataclass
class Relation:
    """Directed, typed edge between two entities that may live in different zones."""
    from_: str
    to: str
    relation_type: str
    from_zone: Optional[str] = None
    to_zone: Optional[str] = None

    @property
    def key(self) -> str:
        return f'{self.from_zone}:{self.from_}|{self.relation_type}|{self.to_zone}:{self.to}'

    @property
    def document_id(self) -> str:
        return f'relation:{self.from_zone}:{self.from_}:{self.relation_type}:{self.to_zone}:{self.to}'

    def to_document(self) -> Dict[str, Any]:
        return {
            'type': 'relation',
            'from': self.from_,
            'fromZone': self.from_zone,
            'to': self.to,
            'toZone': self.to_zone,
            'relationType': self.relation_type
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Relation':
        return cls(from_=doc.get('from', ''),
                   to=doc.get('to', ''),
                   relation_type=doc.get('relationType', ''),
                   from_zone=doc.get('fromZone'),
                   to_zone=doc.get('toZone'))


@dataclass
class ZoneMetadata:
    """Descriptive record of a zone, stored in the metadata collection."""
    name: str
    created_at: str
    last_modified: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    usefulness: Optional[int] = None  # set only when zones are listed with a reason

    def to_document(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'shortDescription': self.short_description,
            'createdAt': self.created_at,
            'lastModified': self.last_modified,
            'config': self.config
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'ZoneMetadata':
        return cls(name=doc.get('name', ''),
                   created_at=doc.get('createdAt', ''),
                   last_modified=doc.get('lastModified', ''),
                   description=doc.get('description'),
                   short_description=doc.get('shortDescription'),
                   config=doc.get('config'))


@dataclass
class SearchHit:
    """One engine hit: the decoded record, its engine score and highlighted snippets."""
    document: Any  # Entity or Relation
    score: Optional[float]
    highlight: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class SearchResponse:
    hits: List[SearchHit]
    total: int


@dataclass
class UserSearchResult:
    entities: List[Entity]
    relations: List[Relation]


@dataclass
class RelatedEntities:
    entities: List[Entity]
    relations: List[Relation]


@dataclass
class SkippedEntity:
    name: str
    reason: str


@dataclass
class CopyResult:
    entities_copied: List[str] = field(default_factory=list)
    entities_skipped: List[SkippedEntity] = field(default_factory=list)
    relations_copied: int = 0


@dataclass
class MoveResult:
    entities_moved: List[str] = field(default_factory=list)
    entities_skipped: List[SkippedEntity] = field(default_factory=list)
    relations_moved: int = 0


@dataclass
class FailedZone:
    zone: str
    reason: str


@dataclass
class MergeResult:
    merged_zones: List[str] = field(default_factory=list)
    failed_zones: List[FailedZone] = field(default_factory=list)
    entities_copied: int = 0
    entities_skipped: int = 0
    relations_copied: int = 0


@dataclass
class ZoneStats:
    zone: str
    entity_count: int
    relation_count: int
    entity_types: Dict[str, int]
    relation_types: Dict[str, int]


@dataclass
class InvalidRelation:
    relation: Dict[str, Any]
    reason: str


@dataclass
class ImportResult:
    entities_added: int = 0
    relations_added: int = 0
    invalid_relations: List[InvalidRelation] = field(default_factory=list)


@dataclass
class ExportBundle:
    entities: List[Dict[str, Any]]
    relations: List[Dict[str, Any]]
    zones: List[ZoneMetadata]


@dataclass
class InspectionResult:
    entities: List[Entity]
    relations: List[Relation]
    tentative_answer: Optional[str] = None


@dataclass
class FailedStep:
    step: str
    reason: str


@dataclass
class SagaOutcome:
    """Structured result of a multi-step operation."""
    operation: str
    succeeded_steps: List[str] = field(default_factory=list)
    failed_steps: List[FailedStep] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_steps
