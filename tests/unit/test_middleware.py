"""
Flask Middleware Unit Tests

Request-level sanitization through the before_request hook and the
per-view decorator, using the Flask test client.
"""

import asyncio

import pytest
from flask import Flask, g, jsonify

from content_sanitizer.config.settings import TestingConfig
from content_sanitizer.middleware import (
    EXTENSION_KEY,
    init_sanitization_middleware,
    register_service,
    sanitize_fields,
)
from content_sanitizer.models import ContentType
from content_sanitizer.service import SanitizationService

pytestmark = pytest.mark.unit


@pytest.fixture
def sanitization_service(audit_sink):
    service = SanitizationService(config=TestingConfig, audit_sink=audit_sink)
    yield service
    asyncio.run(service.destroy())


def _build_app(service, **options) -> Flask:
    app = Flask(__name__)
    app.config['TESTING'] = True
    init_sanitization_middleware(app, service, **options)

    @app.route('/api/pets', methods=['POST'])
    def create_pet():
        return jsonify({
            'body': getattr(g, 'sanitized_json', None),
            'fields': sorted(g.sanitization_results),
        }), 201

    @app.route('/search')
    def search():
        return jsonify({
            'args': g.sanitized_args,
            'fields': sorted(g.sanitization_results),
        })

    return app


@pytest.fixture
def client(sanitization_service):
    return _build_app(sanitization_service).test_client()


class TestRequestHook:

    def test_body_fields_are_sanitized(self, client):
        response = client.post('/api/pets', json={
            'name': '<b onclick="x">Rex</b>',
            'breed': 'Lab',
            'owner_id': 7,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['body'] == {'name': '<b>Rex</b>', 'breed': 'Lab', 'owner_id': 7}
        assert data['fields'] == ['breed', 'name']

    def test_critical_violation_blocks_request(self, client):
        response = client.post('/api/pets', json={'description': 'Fluffy<script>alert(1)</script>'})

        assert response.status_code == 400
        data = response.get_json()
        assert data['code'] == 'CONTENT_BLOCKED'
        assert data['field'] == 'description'
        assert data['violations'] == 1

    def test_blocking_can_be_disabled(self, sanitization_service):
        app = _build_app(sanitization_service, block_critical=False)

        response = app.test_client().post('/api/pets', json={
            'description': 'Fluffy<script>alert(1)</script>',
        })

        assert response.status_code == 201
        assert response.get_json()['body']['description'] == 'Fluffy'

    def test_non_json_body_is_left_alone(self, client):
        response = client.post('/api/pets', data='name=<script>', content_type='text/plain')

        assert response.status_code == 201
        assert response.get_json()['body'] is None

    def test_query_parameters_are_sanitized(self, client):
        response = client.get('/search', query_string={'search': '<script>x</script>cats', 'page': '2'})

        data = response.get_json()
        assert data['args'] == {'search': 'cats'}
        assert data['fields'] == ['query_search']

    def test_request_context_reaches_audit_sink(self, client, audit_sink):
        client.post('/api/pets', json={'name': 'Rex'}, headers={
            'X-Request-ID': 'req-42',
            'User-Agent': 'pet-app/1.0',
        })

        context = audit_sink.actions[0]['context']
        assert context.request_id == 'req-42'
        assert context.user_agent == 'pet-app/1.0'
        assert context.endpoint == '/api/pets'
        assert context.metadata == {'method': 'POST'}

    def test_sanitizer_failure_returns_500(self, client, sanitization_service, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("engine down")

        monkeypatch.setattr(sanitization_service, 'sanitize_detailed', explode)

        response = client.post('/api/pets', json={'name': 'Rex'})

        assert response.status_code == 500
        assert response.get_json()['code'] == 'SANITIZATION_ERROR'

    def test_service_is_registered_as_extension(self, sanitization_service):
        app = _build_app(sanitization_service)
        assert app.extensions[EXTENSION_KEY] is sanitization_service


class TestFieldDecorator:

    @pytest.fixture
    def pet_app(self, sanitization_service) -> Flask:
        app = Flask(__name__)
        register_service(app, sanitization_service)

        @app.route('/pets', methods=['POST'])
        @sanitize_fields(['pet_name'], ContentType.PET_CARD_METADATA)
        def create():
            return jsonify(g.sanitized_json), 201

        return app

    def test_allowed_markup_passes(self, pet_app):
        response = pet_app.test_client().post('/pets', json={'pet_name': '<i>Rex</i>', 'breed': '<b>x</b>'})

        assert response.status_code == 201
        assert response.get_json() == {'pet_name': '<i>Rex</i>', 'breed': '<b>x</b>'}

    def test_critical_field_is_blocked(self, pet_app):
        response = pet_app.test_client().post('/pets', json={'pet_name': '<i>Rex</i><script>x</script>'})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'pet_name'

    def test_missing_service_returns_500(self):
        app = Flask(__name__)

        @app.route('/pets', methods=['POST'])
        @sanitize_fields(['pet_name'])
        def create():
            return jsonify({}), 201

        response = app.test_client().post('/pets', json={'pet_name': 'Rex'})

        assert response.status_code == 500
        assert response.get_json()['code'] == 'SANITIZATION_ERROR'
