"""Tests for the admin blueprint — reference tables and users.

Covers:
- Auth guards (non-admin rejected, anonymous 401)
- User provisioning and validation
- Pincode persona map create / duplicate / delete
- Drop reasons create / deactivate / delete
- SKU mappings
- Stage mappings create / update / validation
"""

from crm.extensions import db
from crm.models.lookup import DropReason, PincodePersonaMap
from crm.models.user import User


# ══════════════════════════════════════════════
#  AUTH GUARDS
# ══════════════════════════════════════════════


class TestAdminGuards:

    def test_anonymous_is_401(self, client, seed_data):
        assert client.get("/admin/api/users").status_code == 401

    def test_field_user_is_403(self, client, seed_data, login):
        login("kam@example.com")
        assert client.get("/admin/api/users").status_code == 403
        resp = client.post(
            "/admin/api/drop-reasons", json={"reason_text": "Sneaky", "step_number": 2}
        )
        assert resp.status_code == 403


# ══════════════════════════════════════════════
#  USERS
# ══════════════════════════════════════════════


class TestUsers:

    def test_list_users(self, client, seed_data, login):
        login("admin@example.com")
        emails = [u["email"] for u in client.get("/admin/api/users").get_json()]
        assert "kam@example.com" in emails
        assert emails == sorted(emails)

    def test_create_user(self, client, seed_data, login, app):
        login("admin@example.com")
        resp = client.post("/admin/api/users", json={
            "email": "New.Taker@example.com",
            "password": "longenough",
            "role": "lead_taker",
            "full_name": "<b>New</b> Taker",
        })
        assert resp.status_code == 201
        assert resp.get_json()["email"] == "new.taker@example.com"
        with app.app_context():
            user = User.query.filter_by(email="new.taker@example.com").first()
            assert user.full_name == "New Taker"
            assert user.role == "lead_taker"

    def test_duplicate_email_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/users", json={
            "email": "kam@example.com", "password": "longenough", "role": "kam",
        })
        assert resp.status_code == 400

    def test_invalid_role_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/users", json={
            "email": "x@example.com", "password": "longenough", "role": "owner",
        })
        assert resp.status_code == 400
        assert "Invalid role" in resp.get_json()["error"]

    def test_short_password_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/users", json={
            "email": "x@example.com", "password": "short", "role": "kam",
        })
        assert resp.status_code == 400


# ══════════════════════════════════════════════
#  PINCODE MAP
# ══════════════════════════════════════════════


class TestPincodeMap:

    def test_create_mapping_widens_scope(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/pincode-map", json={
            "pincode": "560099",
            "locality": "Whitefield",
            "role": "calling_agent",
            "user_email": "Agent@example.com",
        })
        assert resp.status_code == 201
        assert resp.get_json()["user_email"] == "agent@example.com"

        client.post("/auth/logout")
        login("agent@example.com")
        scope = client.get("/auth/me").get_json()["scope"]
        assert scope["pincodes"] == ["560001", "560099"]

    def test_duplicate_mapping_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/pincode-map", json={
            "pincode": "560001",
            "locality": "MG Road",
            "role": "kam",
            "user_email": "kam@example.com",
        })
        assert resp.status_code == 400

    def test_delete_mapping(self, client, seed_data, login, app):
        login("admin@example.com")
        with app.app_context():
            mapping_id = PincodePersonaMap.query.filter_by(user_email="kam@example.com").first().id
        assert client.delete(f"/admin/api/pincode-map/{mapping_id}").status_code == 200
        with app.app_context():
            assert db.session.get(PincodePersonaMap, mapping_id) is None


# ══════════════════════════════════════════════
#  DROP REASONS
# ══════════════════════════════════════════════


class TestDropReasons:

    def test_list_ordered_by_step(self, client, seed_data, login):
        login("admin@example.com")
        data = client.get("/admin/api/drop-reasons").get_json()
        assert [r["step_number"] for r in data] == [2, 3, 4]

    def test_create_reason(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post(
            "/admin/api/drop-reasons", json={"reason_text": "Closed down", "step_number": 3}
        )
        assert resp.status_code == 201
        assert resp.get_json()["is_active"] is True

    def test_invalid_step_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post(
            "/admin/api/drop-reasons", json={"reason_text": "Closed down", "step_number": 5}
        )
        assert resp.status_code == 400

    def test_deactivated_reason_leaves_breakdown(self, client, seed_data, login, app):
        login("admin@example.com")
        with app.app_context():
            reason_id = DropReason.query.filter_by(reason_text="Price concerns").first().id
        resp = client.put(f"/admin/api/drop-reasons/{reason_id}", json={"is_active": False})
        assert resp.status_code == 200
        assert resp.get_json()["is_active"] is False

        data = client.get("/api/funnel/drop-reasons").get_json()
        stage3 = next(d for d in data if d["step_number"] == 3)
        assert stage3["reasons"] == []

    def test_update_missing_reason_is_404(self, client, seed_data, login):
        login("admin@example.com")
        assert client.put("/admin/api/drop-reasons/nope", json={}).status_code == 404

    def test_delete_reason(self, client, seed_data, login, app):
        login("admin@example.com")
        with app.app_context():
            reason_id = DropReason.query.filter_by(reason_text="Quality issue").first().id
        assert client.delete(f"/admin/api/drop-reasons/{reason_id}").status_code == 200
        with app.app_context():
            assert db.session.get(DropReason, reason_id) is None


# ══════════════════════════════════════════════
#  SKU + STAGE MAPPINGS
# ══════════════════════════════════════════════


class TestSkuMappings:

    def test_create_and_list(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/sku-mappings", json={
            "sku_name": "Hass 200g", "grammage": 200, "lot_size": 10, "box_count": 4,
        })
        assert resp.status_code == 201
        data = client.get("/admin/api/sku-mappings").get_json()
        assert [s["sku_name"] for s in data] == ["Hass 200g"]

    def test_grammage_required(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/sku-mappings", json={"sku_name": "Hass"})
        assert resp.status_code == 400


class TestStageMappings:

    def test_create_and_update(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/stage-mappings", json={
            "stage_number": 1,
            "stage_description": "Hard green",
            "consumption_days_min": 4,
            "consumption_days_max": 6,
        })
        assert resp.status_code == 201
        stage_id = resp.get_json()["id"]

        resp = client.put(f"/admin/api/stage-mappings/{stage_id}", json={
            "stage_number": 1,
            "stage_description": "Firm green",
            "consumption_days_min": 3,
            "consumption_days_max": 5,
        })
        assert resp.status_code == 200
        assert resp.get_json()["stage_description"] == "Firm green"

    def test_min_above_max_rejected(self, client, seed_data, login):
        login("admin@example.com")
        resp = client.post("/admin/api/stage-mappings", json={
            "stage_number": 2,
            "stage_description": "Breaking",
            "consumption_days_min": 5,
            "consumption_days_max": 2,
        })
        assert resp.status_code == 400
