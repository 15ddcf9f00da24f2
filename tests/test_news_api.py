import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from schoolhub.core import router_guard
from schoolhub.db import Base, get_db, get_session_factory
from schoolhub.models import AuthUser, NewsPost, NewsPostImage
from schoolhub.routers import news_posts, public_news
from schoolhub.services.observability_counters import clear_observability_events, count_observability_events


SESSIONS = {
    'token-admin': {'user_id': 1, 'role': 'admin', 'name': 'Meena', 'email': 'meena@example.org'},
    'token-teacher': {'user_id': 2, 'role': 'teacher', 'name': 'Kavya', 'email': 'kavya@example.org'},
    'token-other-teacher': {'user_id': 3, 'role': 'teacher', 'name': 'Arjun', 'email': 'arjun@example.org'},
    'token-parent': {'user_id': 4, 'role': 'parent', 'name': 'Lakshmi', 'email': 'lakshmi@example.org'},
}


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


def _post_body(title: str = 'Science exhibition') -> dict:
    return {
        'title': {'en': title, 'ta': 'அறிவியல் கண்காட்சி'},
        'summary': {'en': 'Projects from grades 6 to 9.'},
        'body': {'en': '<p>Visit the main hall on Friday.</p>'},
        'category': 'events',
        'tags': ['science'],
        'images': [{'url': 'https://cdn.example.org/expo.jpg', 'alt': {'en': 'Expo'}}],
    }


class NewsApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_news_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_validate_session_token = router_guard.validate_session_token
        router_guard.validate_session_token = lambda token: SESSIONS.get(token or '')

        app = FastAPI()
        app.include_router(news_posts.router)
        app.include_router(public_news.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_session_factory] = lambda: cls._session_factory
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        router_guard.validate_session_token = cls._orig_validate_session_token
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_observability_events()
        db = self._session_factory()
        try:
            db.query(NewsPostImage).delete()
            db.query(NewsPost).delete()
            db.query(AuthUser).delete()
            db.add_all(
                [
                    AuthUser(id=s['user_id'], email=s['email'], name=s['name'], role=s['role'], password_hash='')
                    for s in SESSIONS.values()
                ]
            )
            db.commit()
        finally:
            db.close()

    def _create(self, token: str = 'token-teacher', title: str = 'Science exhibition') -> dict:
        resp = self.client.post('/api/news-posts', json=_post_body(title), headers=_auth(token))
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def test_requires_session(self):
        resp = self.client.get('/api/news-posts')
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()['detail']['code'], 'auth/unauthenticated')

    def test_full_moderation_flow(self):
        post = self._create()
        self.assertEqual(post['status'], 'draft')
        self.assertEqual(post['allowed_actions'], ['submit', 'publish'])
        self.assertEqual(post['images'][0]['order'], 0)

        resp = self.client.post(f"/api/news-posts/{post['id']}/submit", headers=_auth('token-teacher'))
        self.assertEqual(resp.json()['status'], 'pending_review')

        count = self.client.get('/api/news-posts/pending-count', headers=_auth('token-admin'))
        self.assertEqual(count.json(), {'count': 1})

        resp = self.client.post(f"/api/news-posts/{post['id']}/reject", json={'reason': ''}, headers=_auth('token-admin'))
        self.assertEqual(resp.status_code, 422)
        self.assertIn('rejection_reason', resp.json()['detail']['errors'])

        resp = self.client.post(
            f"/api/news-posts/{post['id']}/reject",
            json={'reason': 'needs more detail'},
            headers=_auth('token-admin'),
        )
        self.assertEqual(resp.json()['status'], 'rejected')
        self.assertEqual(resp.json()['rejection_reason'], 'needs more detail')

        resp = self.client.patch(
            f"/api/news-posts/{post['id']}",
            json={'body': {'en': '<p>Visit the main hall on Friday from 10 AM.</p>'}},
            headers=_auth('token-teacher'),
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.client.post(f"/api/news-posts/{post['id']}/submit", headers=_auth('token-teacher'))
        self.client.post(f"/api/news-posts/{post['id']}/approve", headers=_auth('token-admin'))
        resp = self.client.post(f"/api/news-posts/{post['id']}/publish", headers=_auth('token-admin'))
        self.assertEqual(resp.json()['status'], 'published')
        self.assertIsNone(resp.json()['rejection_reason'])

        public = self.client.get('/api/public/news-posts', params={'lang': 'ta'})
        self.assertEqual(public.status_code, 200)
        self.assertEqual(public.json()['total'], 1)
        self.assertEqual(public.json()['items'][0]['display']['title'], 'அறிவியல் கண்காட்சி')

    def test_error_mapping(self):
        post = self._create()
        resp = self.client.post(f"/api/news-posts/{post['id']}/approve", headers=_auth('token-admin'))
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['detail']['code'], 'workflow/invalid-transition')

        self.client.post(f"/api/news-posts/{post['id']}/submit", headers=_auth('token-teacher'))
        resp = self.client.post(f"/api/news-posts/{post['id']}/approve", headers=_auth('token-other-teacher'))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()['detail']['code'], 'auth/forbidden')

        resp = self.client.get('/api/news-posts/99999', headers=_auth('token-admin'))
        self.assertEqual(resp.status_code, 404)

        resp = self.client.post('/api/news-posts', json=_post_body(''), headers=_auth('token-teacher'))
        self.assertEqual(resp.status_code, 422)
        self.assertIn('title.en', resp.json()['detail']['errors'])

        resp = self.client.post('/api/news-posts', json=_post_body(), headers=_auth('token-parent'))
        self.assertEqual(resp.status_code, 403)

    def test_delete_and_get_by_slug(self):
        post = self._create()
        resp = self.client.get(f"/api/news-posts/{post['slug']}", headers=_auth('token-teacher'))
        self.assertEqual(resp.json()['id'], post['id'])

        resp = self.client.get(f"/api/news-posts/{post['id']}", headers=_auth('token-other-teacher'))
        self.assertEqual(resp.status_code, 403)

        self.assertEqual(self.client.delete(f"/api/news-posts/{post['id']}", headers=_auth('token-teacher')).status_code, 204)
        self.assertEqual(self.client.delete(f"/api/news-posts/{post['id']}", headers=_auth('token-teacher')).status_code, 404)

    def test_view_endpoint_always_accepts(self):
        post = self._create(token='token-admin')
        self.client.post(f"/api/news-posts/{post['id']}/publish", headers=_auth('token-admin'))

        resp = self.client.post(f"/api/public/news-posts/{post['slug']}/view")
        self.assertEqual(resp.status_code, 202)
        resp = self.client.post('/api/public/news-posts/no-such-post/view')
        self.assertEqual(resp.status_code, 202)

        detail = self.client.get(f"/api/public/news-posts/{post['slug']}")
        self.assertEqual(detail.json()['views'], 1)
        self.assertEqual(count_observability_events('news_view_recorded'), 1)
        self.assertEqual(self.client.get('/api/public/news-posts/no-such-post').status_code, 404)

    def test_view_failures_are_swallowed(self):
        with patch.object(public_news, 'record_view', side_effect=RuntimeError('database unavailable')):
            resp = self.client.post('/api/public/news-posts/anything/view')
        self.assertEqual(resp.status_code, 202)
        self.assertEqual(count_observability_events('news_view_failed'), 1)

    def test_pin_and_listing(self):
        first = self._create(token='token-admin', title='Holiday notice')
        second = self._create(token='token-admin', title='Exam schedule')
        for post in (first, second):
            self.client.post(f"/api/news-posts/{post['id']}/publish", headers=_auth('token-admin'))
        resp = self.client.post(f"/api/news-posts/{first['id']}/pin", json={'is_pinned': True}, headers=_auth('token-admin'))
        self.assertTrue(resp.json()['is_pinned'])

        public = self.client.get('/api/public/news-posts').json()
        self.assertEqual(public['items'][0]['id'], first['id'])

        staff = self.client.get('/api/news-posts', params={'status': 'published'}, headers=_auth('token-admin')).json()
        self.assertEqual(staff['total'], 2)
        bad = self.client.get('/api/news-posts', params={'status': 'archived'}, headers=_auth('token-admin'))
        self.assertEqual(bad.status_code, 422)


if __name__ == '__main__':
    unittest.main()
