'''Post storage over a single key-value slot.

The whole post collection lives as one JSON array in one row of the
``slots`` table. Reads decode the row wholesale and writes replace it
wholesale. Mutations are serialised by a per-key lock inside the process
and by a compare-and-swap on the row's ``version`` column across processes.
'''

import json, logging, secrets, string, threading
from typing import Optional, Callable, Iterable
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from models import db, Slot, Post, utcnow, format_timestamp

logger : logging.Logger = logging.getLogger(__name__)

DEFAULT_KEY : str = 'blog-posts'
ID_LENGTH : int = 12
WRITE_ATTEMPTS : int = 3


class StoreError(Exception):
    pass


class ValidationError(StoreError):
    def __init__(self, fields: list[str]) -> None:
        self.fields : list[str] = fields
        super().__init__(f'required fields are empty: {", ".join(fields)}')


class NotFoundError(StoreError):
    def __init__(self, post_id: str, store_empty: bool) -> None:
        self.post_id : str = post_id
        self.store_empty : bool = store_empty
        reason : str = 'no posts stored' if store_empty else 'no such post'
        super().__init__(f'post {post_id!r} not found ({reason})')


class StorageCorruptionError(StoreError):
    def __init__(self, key: str, detail: str) -> None:
        self.key : str = key
        super().__init__(f'slot {key!r} holds an unreadable post collection: {detail}')


class ConflictError(StoreError):
    def __init__(self, key: str) -> None:
        self.key : str = key
        super().__init__(f'slot {key!r} was modified concurrently')


def generate_id(length: int = ID_LENGTH) -> str:
    return ''.join(secrets.choice(string.ascii_letters + string.digits) for _ in range(length))


class PostStore:
    '''The post collection stored under one slot key.

    Must be used inside a Flask application context, since it goes through
    ``db.session``.
    '''

    _locks : dict[str, threading.Lock] = {}
    _locks_guard : threading.Lock = threading.Lock()

    def __init__(self, key: str = DEFAULT_KEY) -> None:
        self.key : str = key
        with PostStore._locks_guard:
            self._lock : threading.Lock = PostStore._locks.setdefault(key, threading.Lock())

    def load(self, strict: bool = False) -> list[Post]:
        '''Return the stored collection, newest first.

        A missing slot reads as empty. An unreadable slot reads as empty too,
        unless ``strict`` is set, in which case StorageCorruptionError is raised.
        '''
        stored : Optional[tuple[str, int]] = self._read()
        if stored is None:
            return []
        try:
            return self._decode(stored[0])
        except StorageCorruptionError as exc:
            if strict:
                raise
            logger.warning('Treating post collection as empty: %s', exc)
            return []

    def save_all(self, posts: Iterable[Post]) -> None:
        '''Overwrite the slot with ``posts``, replacing whatever it held before.'''
        replacement : list[Post] = list(posts)
        self._mutate(lambda _current: replacement, decode=False)

    def create(self, title: str, content: str, image_url: Optional[str] = None) -> Post:
        title = (title or '').strip()
        content = (content or '').strip()
        missing : list[str] = [name for name, value in (('title', title), ('content', content)) if not value]
        if missing:
            raise ValidationError(missing)
        image_url = (image_url or '').strip() or None
        created : list[Post] = []

        def prepend(posts: list[Post]) -> list[Post]:
            taken : set[str] = {post.id for post in posts}
            post_id : str = generate_id()
            while post_id in taken:
                post_id = generate_id()
            # createdAt never runs backwards, even if the clock does
            moment = max([utcnow()] + [post.created for post in posts])
            post : Post = Post(
                id=post_id,
                title=title,
                content=content,
                created_at=format_timestamp(moment),
                image_url=image_url,
            )
            created[:] = [post]
            return [post] + posts

        self._mutate(prepend)
        logger.info('Created post %s (%r)', created[0].id, created[0].title)
        return created[0]

    def delete(self, post_id: str) -> bool:
        '''Remove the post with ``post_id``. Returns False, without writing, if it is not stored.'''
        outcome : dict[str, bool] = {'removed': False}

        def remove(posts: list[Post]) -> Optional[list[Post]]:
            remaining : list[Post] = [post for post in posts if post.id != post_id]
            outcome['removed'] = len(remaining) != len(posts)
            return remaining if outcome['removed'] else None

        self._mutate(remove)
        if outcome['removed']:
            logger.info('Deleted post %s', post_id)
        return outcome['removed']

    def find_by_id(self, post_id: str, posts: Optional[list[Post]] = None) -> Post:
        if posts is None:
            posts = self.load()
        for post in posts:
            if post.id == post_id:
                return post
        raise NotFoundError(post_id, store_empty=not posts)

    def _read(self) -> Optional[tuple[str, int]]:
        row = db.session.execute(
            select(Slot.value, Slot.version).where(Slot.key == self.key)
        ).first()
        if row is None:
            return None
        return row.value, row.version

    def _decode(self, raw: str) -> list[Post]:
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageCorruptionError(self.key, f'invalid JSON ({exc})') from exc
        if not isinstance(entries, list):
            raise StorageCorruptionError(self.key, 'stored value is not an array')
        try:
            return [Post.from_dict(entry) for entry in entries]
        except ValueError as exc:
            raise StorageCorruptionError(self.key, str(exc)) from exc

    def _mutate(self, change: Callable[[list[Post]], Optional[list[Post]]], decode: bool = True) -> None:
        '''Read, apply ``change`` and write back, retrying when another writer got there first.

        ``change`` returns the new collection, or None to leave the slot untouched.
        '''
        with self._lock:
            for attempt in range(1, WRITE_ATTEMPTS + 1):
                stored : Optional[tuple[str, int]] = self._read()
                posts : list[Post] = self._decode(stored[0]) if stored is not None and decode else []
                updated : Optional[list[Post]] = change(posts)
                if updated is None:
                    return
                try:
                    self._write(updated, None if stored is None else stored[1])
                    return
                except ConflictError:
                    logger.warning('Write conflict on slot %r (attempt %d of %d)', self.key, attempt, WRITE_ATTEMPTS)
            raise ConflictError(self.key)

    def _write(self, posts: list[Post], version: Optional[int]) -> None:
        payload : str = json.dumps([post.to_dict() for post in posts], ensure_ascii=False)
        if version is None:
            db.session.add(Slot(key=self.key, value=payload, version=1))
        else:
            result = db.session.execute(
                update(Slot)
                .where(Slot.key == self.key, Slot.version == version)
                .values(value=payload, version=version + 1, updated_at=utcnow())
            )
            if result.rowcount != 1:
                db.session.rollback()
                raise ConflictError(self.key)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(self.key) from exc
