from flask_sqlalchemy import SQLAlchemy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Any

db = SQLAlchemy()

PREVIEW_LENGTH : int = 200
PREVIEW_MARKER : str = '...'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    '''Render a datetime as an ISO 8601 UTC string with millisecond precision.'''
    return moment.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    moment : datetime = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class Slot(db.Model):
    __tablename__ = 'slots'
    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)


@dataclass
class Post:
    id : str
    title : str
    content : str
    created_at : str
    image_url : Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        data : dict[str, str] = {'id': self.id, 'title': self.title, 'content': self.content}
        if self.image_url is not None:
            data['imageUrl'] = self.image_url
        data['createdAt'] = self.created_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> 'Post':
        '''Build a Post from one decoded JSON object, rejecting anything of the wrong shape.'''
        if not isinstance(data, dict):
            raise ValueError(f'post entry must be an object, got {type(data).__name__}')
        for field in ('id', 'title', 'content', 'createdAt'):
            if not isinstance(data.get(field), str):
                raise ValueError(f'post field {field!r} is missing or not a string')
        image_url : Any = data.get('imageUrl')
        if image_url is not None and not isinstance(image_url, str):
            raise ValueError("post field 'imageUrl' is not a string")
        parse_timestamp(data['createdAt'])
        return cls(
            id=data['id'],
            title=data['title'],
            content=data['content'],
            created_at=data['createdAt'],
            image_url=image_url,
        )

    @property
    def created(self) -> datetime:
        return parse_timestamp(self.created_at)

    @property
    def preview(self) -> str:
        return self.content[:PREVIEW_LENGTH] + PREVIEW_MARKER
