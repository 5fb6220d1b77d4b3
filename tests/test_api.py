"""Tests for the JSON endpoints under /api/posts."""

from models import db, Slot


class TestListAndCreate:

    def test_list_empty(self, client):
        response = client.get('/api/posts')
        assert response.status_code == 200
        assert response.get_json() == []

    def test_create_returns_post(self, client, store):
        response = client.post('/api/posts', json={'title': 'Hello', 'content': 'World body'})
        assert response.status_code == 201
        payload = response.get_json()
        assert payload['success'] is True
        assert payload['post']['title'] == 'Hello'
        assert 'imageUrl' not in payload['post']
        assert store.find_by_id(payload['post']['id']).content == 'World body'

    def test_create_with_image(self, client):
        response = client.post('/api/posts', json={
            'title': 'Pic', 'content': 'body', 'imageUrl': 'data:image/gif;base64,R0lGOD',
        })
        assert response.get_json()['post']['imageUrl'] == 'data:image/gif;base64,R0lGOD'

    def test_create_rejects_remote_image_url(self, client, store):
        response = client.post('/api/posts', json={
            'title': 'Pic', 'content': 'body', 'imageUrl': 'https://example.com/cat.png',
        })
        assert response.status_code == 400
        assert response.get_json()['fields'] == ['imageUrl']
        assert store.load() == []

    def test_list_newest_first(self, client):
        client.post('/api/posts', json={'title': 'A', 'content': '1'})
        client.post('/api/posts', json={'title': 'B', 'content': '2'})
        assert [p['title'] for p in client.get('/api/posts').get_json()] == ['B', 'A']

    def test_create_validation_error(self, client, store):
        response = client.post('/api/posts', json={'title': '', 'content': '   '})
        assert response.status_code == 400
        payload = response.get_json()
        assert payload['success'] is False
        assert payload['fields'] == ['title', 'content']
        assert store.load() == []

    def test_create_with_non_object_body(self, client):
        response = client.post('/api/posts', json=['title', 'content'])
        assert response.status_code == 400

    def test_create_with_non_string_fields(self, client):
        response = client.post('/api/posts', json={'title': 5, 'content': 'x'})
        assert response.status_code == 400
        assert response.get_json()['fields'] == ['title']

    def test_create_against_corrupt_slot(self, client, store):
        db.session.add(Slot(key=store.key, value='nope', version=1))
        db.session.commit()
        response = client.post('/api/posts', json={'title': 'T', 'content': 'C'})
        assert response.status_code == 500
        assert response.get_json()['success'] is False


class TestSinglePost:

    def test_get_post(self, client, store):
        post = store.create('T', 'C')
        response = client.get(f'/api/posts/{post.id}')
        assert response.status_code == 200
        assert response.get_json() == post.to_dict()

    def test_get_missing_on_empty_store(self, client):
        response = client.get('/api/posts/ghost')
        assert response.status_code == 404
        assert response.get_json()['storeEmpty'] is True

    def test_get_missing_in_populated_store(self, client, store):
        store.create('T', 'C')
        response = client.get('/api/posts/ghost')
        assert response.status_code == 404
        assert response.get_json()['storeEmpty'] is False

    def test_delete_requires_confirmation(self, client, store):
        post = store.create('T', 'C')
        response = client.delete(f'/api/posts/{post.id}')
        assert response.status_code == 428
        assert store.load() == [post]

    def test_confirmed_delete(self, client, store):
        post = store.create('T', 'C')
        response = client.delete(f'/api/posts/{post.id}?confirm=true')
        assert response.status_code == 200
        assert response.get_json() == {'success': True, 'deleted': True}
        assert client.get(f'/api/posts/{post.id}').status_code == 404

    def test_confirmed_delete_of_unknown_id(self, client, store):
        store.create('T', 'C')
        response = client.delete('/api/posts/ghost?confirm=true')
        assert response.get_json() == {'success': True, 'deleted': False}
        assert len(store.load()) == 1
