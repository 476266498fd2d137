"""
Records passed between the content store, the ranking engine and the cache

Every record serializes to a JSON-compatible dict so it can be cached in Redis
and rebuilt on a cache hit.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser

from shared.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through) as an aware UTC datetime"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parser.isoparse(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Category:
    id: str
    name: str
    description: str = ''
    image: str = ''
    is_active: bool = True
    sort_order: int = 0
    facts_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        data['updated_at'] = _iso(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Category':
        return cls(
            id=data['id'],
            name=data['name'],
            description=data.get('description', ''),
            image=data.get('image', ''),
            is_active=data.get('is_active', True),
            sort_order=data.get('sort_order', 0),
            facts_count=data.get('facts_count', 0),
            created_at=parse_timestamp(data.get('created_at')) or utcnow(),
            updated_at=parse_timestamp(data.get('updated_at')) or utcnow(),
        )


@dataclass
class Fact:
    id: str
    title: str
    description: str
    category_id: str
    image: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    # Populated on reads that join the category or the view ledger
    category_name: Optional[str] = None
    views: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = _iso(self.created_at)
        data['updated_at'] = _iso(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Fact':
        return cls(
            id=data['id'],
            title=data['title'],
            description=data['description'],
            category_id=data['category_id'],
            image=data.get('image'),
            created_at=parse_timestamp(data.get('created_at')) or utcnow(),
            updated_at=parse_timestamp(data.get('updated_at')) or utcnow(),
            category_name=data.get('category_name'),
            views=data.get('views'),
        )


@dataclass
class User:
    id: str
    interests: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Subject:
    """
    The viewer of content: an authenticated user or an anonymous client id.
    Exactly one of the two identifiers is set.
    """
    user_id: Optional[str] = None
    anon_id: Optional[str] = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.anon_id):
            raise ValidationError('Exactly one of user id or anonymous id is required')

    @classmethod
    def authenticated(cls, user_id: str) -> 'Subject':
        return cls(user_id=user_id)

    @classmethod
    def anonymous(cls, anon_id: str) -> 'Subject':
        return cls(anon_id=anon_id)

    @classmethod
    def resolve(cls, user_id: Optional[str] = None, anon_id: Optional[str] = None) -> 'Subject':
        """
        Pick the subject for a read request. A verified user wins over an
        anonymous id sent alongside it.

        Raises:
            ValidationError: neither identifier is present
        """
        if user_id:
            return cls(user_id=user_id)
        if anon_id:
            return cls(anon_id=anon_id)
        raise ValidationError('User id or anonymous id is required')

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def identity(self) -> str:
        return self.user_id or self.anon_id

    def cache_params(self) -> Dict[str, str]:
        if self.user_id:
            return {'user_id': self.user_id}
        return {'anon_id': self.anon_id}


@dataclass
class ViewEvent:
    id: str
    fact_id: str
    user_id: Optional[str] = None
    anon_id: Optional[str] = None
    viewed_at: datetime = field(default_factory=utcnow)
    view_duration: Optional[float] = None
    completion_rate: Optional[float] = None

    @property
    def subject_identity(self) -> str:
        return self.user_id or self.anon_id


@dataclass
class PreferenceSignal:
    preferred_time_of_day: int = 12
    average_view_duration: float = 30.0
    completion_rate: float = 0.7


@dataclass
class CategoryEngagement:
    view_count: int
    last_viewed_at: datetime
    average_view_duration: Optional[float] = None
    completion_rate: Optional[float] = None


@dataclass
class FeedResult:
    facts: List[Fact]
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'facts': [fact.to_dict() for fact in self.facts],
            'has_more': self.has_more,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeedResult':
        return cls(
            facts=[Fact.from_dict(item) for item in data.get('facts', [])],
            has_more=bool(data.get('has_more', False)),
        )


@dataclass
class FactPage:
    facts: List[Fact]
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {'facts': [fact.to_dict() for fact in self.facts], 'total': self.total}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FactPage':
        return cls(
            facts=[Fact.from_dict(item) for item in data.get('facts', [])],
            total=data.get('total', 0),
        )
