"""
Tests de API - Health y disponibilidad
"""


class TestHealthAPI:
    """Tests de endpoints de health"""

    def test_health_live(self, client):
        r = client.get("/health/live")
        assert r.status_code == 200

    def test_health_ready_response_body(self, client):
        """GET /health/ready debe verificar la BD y retornar status ok"""
        r = client.get("/health/ready")
        assert r.status_code == 200
        assert r.json().get("status") == "ok"

    def test_security_headers(self, client):
        r = client.get("/health/live")
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert r.headers["X-Frame-Options"] == "DENY"
