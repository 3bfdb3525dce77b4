"""
Tests for the HTTP interface.
"""

import os
import shutil
import tempfile
from unittest.mock import Mock

from fastapi.testclient import TestClient

from ai_story_guard.api.app import create_app
from ai_story_guard.config.loader import AuthConfig, RateLimitConfig, ServiceConfig
from ai_story_guard.core.facade import AIService
from ai_story_guard.core.generation import GenerationResult
from ai_story_guard.storage.repository import SqliteStoryStore, initialize_schema

AUTH = {"Authorization": "Bearer secret-token"}


class TestAPI:
    """Test endpoints, auth and error mapping."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)

        self.provider = Mock()
        self.provider.generate.return_value = GenerationResult(text="Polished text", url="http://images/cover.png")
        self.classifier = Mock()
        self.classifier.classify.return_value = "SAFE"

        config = ServiceConfig(
            database=self.db_path,
            rate_limits=RateLimitConfig(default=2, operations={"enhance": 1})
        )
        service = AIService.from_config(config, self.provider, self.classifier)
        self.store = SqliteStoryStore(self.db_path)
        self.client = TestClient(create_app(service, AuthConfig(tokens={"secret-token": "user-1"})))

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_missing_token(self):
        response = self.client.post("/summary", json={"story_content": "A story"})
        assert response.status_code == 401
        assert response.json() == {"error": "Missing authorization header"}

    def test_unknown_token(self):
        response = self.client.post(
            "/summary",
            json={"story_content": "A story"},
            headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401
        assert "error" in response.json()

    def test_enhance_returns_bare_payload(self):
        response = self.client.post("/enhance", json={"content": "We met in Paris."}, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"enhancedContent": "Polished text"}

    def test_twist_returns_bare_payload(self):
        self.provider.generate.return_value = GenerationResult(text='["A hidden sibling", "A lost ring"]')

        response = self.client.post(
            "/twist",
            json={"story_context": "Two strangers meet", "recent_chapters": ["They talk all night."]},
            headers=AUTH
        )

        assert response.status_code == 200
        assert response.json() == {"twists": ["A hidden sibling", "A lost ring"]}

    def test_continuation_returns_bare_payload(self):
        response = self.client.post(
            "/continuation", json={"story_context": "A cozy romance", "theme": "fantasy"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json() == {"suggestions": ["Polished text"]}

    def test_too_many_chapters_maps_to_400(self):
        response = self.client.post(
            "/continuation",
            json={"story_context": "A cozy romance", "recent_chapters": ["text"] * 11},
            headers=AUTH
        )

        assert response.status_code == 400
        assert response.json() == {"error": "recent_chapters exceeds maximum of 10 items"}

    def test_rate_limit_maps_to_429(self):
        self.client.post("/enhance", json={"content": "We met in Paris."}, headers=AUTH)
        response = self.client.post("/enhance", json={"content": "We met in Rome."}, headers=AUTH)

        assert response.status_code == 429
        assert response.json() == {"error": "Daily AI limit reached (1 calls per day)"}
        assert int(response.headers["Retry-After"]) > 0

    def test_unsafe_content_maps_to_400(self):
        self.classifier.classify.return_value = "UNSAFE: violence"

        response = self.client.post("/summary", json={"story_content": "A story"}, headers=AUTH)
        assert response.status_code == 400
        assert response.json() == {"error": "Content violates safety guidelines: violence"}

    def test_provider_failure_maps_to_500(self):
        self.provider.generate.side_effect = RuntimeError("boom")

        response = self.client.post("/cover-art", json={"prompt": "A castle"}, headers=AUTH)
        assert response.status_code == 500
        assert "error" in response.json()

    def test_body_validation_maps_to_400(self):
        response = self.client.post("/summary", json={"title": "No content"}, headers=AUTH)

        assert response.status_code == 400
        assert "story_content" in response.json()["error"]

    def test_service_validation_maps_to_400(self):
        response = self.client.post(
            "/style-transfer", json={"text": "A story", "target_style": "gothic"}, headers=AUTH
        )
        assert response.status_code == 400
        assert "target_style" in response.json()["error"]

    def test_cached_flag_in_envelope(self):
        body = {"prompt": "A castle", "story_title": "Ember"}
        first = self.client.post("/cover-art", json=body, headers=AUTH).json()
        second = self.client.post("/cover-art", json=body, headers=AUTH).json()

        assert first == {"success": True, "data": {"url": "http://images/cover.png"}, "cached": False}
        assert second["cached"] is True

    def test_avatar(self):
        response = self.client.post(
            "/avatar",
            json={"character_name": "Mara", "character_description": "a warrior queen", "style": "anime"},
            headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"url": "http://images/cover.png", "character_name": "Mara"}

    def test_text_endpoints(self):
        style = self.client.post(
            "/style-transfer", json={"text": "A story", "target_style": "noir"}, headers=AUTH
        )
        analysis = self.client.post(
            "/narrative-analysis", json={"story_content": "A story"}, headers=AUTH
        )

        assert style.json()["data"]["transformed_text"] == "Polished text"
        assert analysis.json()["data"] == {"analysis": "Polished text"}

    def test_consistency(self):
        self.store.add_character("story-1", "Mara", "a fierce warrior queen")
        self.store.add_chapter("story-1", 1, "Mara walked to the market.")

        response = self.client.post("/consistency", json={"story_id": "story-1"}, headers=AUTH)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["consistency_score"] == 70
        assert len(data["issues"]) == 3

    def test_consistency_unknown_chapter(self):
        response = self.client.post(
            "/consistency", json={"story_id": "story-1", "chapter_id": "nope"}, headers=AUTH
        )
        assert response.status_code == 404

    def test_consistency_invalid_action(self):
        response = self.client.post(
            "/consistency", json={"story_id": "story-1", "action": "rewrite"}, headers=AUTH
        )
        assert response.status_code == 400
