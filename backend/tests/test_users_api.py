"""
Tests for phone OTP sign-in and buyer account management.
"""

from khareedo.models.activity import UserPropertyActivity
from khareedo.models.lead import Lead
from khareedo.models.otp import OTP
from khareedo.models.user import User


PHONE = {"phoneNumber": "9123456780", "countryCode": "+91"}


def _latest_code(db):
    db.expire_all()
    return db.query(OTP).order_by(OTP.created_at.desc()).first().otp


class TestOtpFlow:

    def test_new_number_gets_placeholder_account(self, client, db, sms):
        response = client.post("/api/users/login-or-register", json=PHONE)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["isNewUser"] is True
        assert data["otpSent"] is True

        user = db.query(User).filter_by(phone_number="9123456780").one()
        assert user.email == "temp_9123456780@milke-khareedo.com"
        assert user.role_name == "User"
        assert sms.sent[0]["to"] == "+919123456780"
        assert "registration" in sms.sent[0]["body"]

    def test_verify_issues_token(self, client, db):
        client.post("/api/users/login-or-register", json=PHONE)
        code = _latest_code(db)

        response = client.post("/api/users/verify-otp", json={**PHONE, "otp": code})
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "OTP verified successfully"
        assert body["data"]["user"]["isPhoneVerified"] is True

        profile = client.get("/api/users/profile",
                             headers={"Authorization": f"Bearer {body['data']['token']}"})
        assert profile.status_code == 200
        assert profile.json()["data"]["phoneNumber"] == "9123456780"

    def test_wrong_code_counts_attempts(self, client, db):
        client.post("/api/users/login-or-register", json=PHONE)
        code = _latest_code(db)
        wrong = "000000" if code != "000000" else "111111"

        response = client.post("/api/users/verify-otp", json={**PHONE, "otp": wrong})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid OTP. 4 attempt(s) left"

        for _ in range(4):
            client.post("/api/users/verify-otp", json={**PHONE, "otp": wrong})
        response = client.post("/api/users/verify-otp", json={**PHONE, "otp": code})
        assert response.json()["message"] == "Too many attempts. Please request a new OTP"

    def test_known_number_gets_login_code(self, client, db, sms):
        client.post("/api/users/login-or-register", json=PHONE)
        client.post("/api/users/verify-otp", json={**PHONE, "otp": _latest_code(db)})

        response = client.post("/api/users/login-or-register", json=PHONE)
        assert response.json()["data"]["isNewUser"] is False
        assert "login" in sms.sent[-1]["body"]
        assert db.query(User).filter_by(phone_number="9123456780").count() == 1

    def test_sms_failure_still_succeeds(self, client, sms):
        sms.fail = True
        response = client.post("/api/users/login-or-register", json=PHONE)
        assert response.status_code == 200
        assert response.json()["data"]["otpSent"] is False
        assert response.json()["message"] == "Could not send OTP. Please try resending."

    def test_resend_replaces_previous_code(self, client, db):
        client.post("/api/users/login-or-register", json=PHONE)
        response = client.post("/api/users/resend-otp", json=PHONE)
        assert response.status_code == 200
        assert db.query(OTP).filter_by(phone_number="9123456780", is_verified=False).count() == 1

    def test_resend_unknown_number(self, client):
        response = client.post("/api/users/resend-otp", json={"phoneNumber": "9000000001"})
        assert response.status_code == 404
        assert response.json()["message"] == "User not found"

    def test_phone_must_have_ten_digits(self, client):
        response = client.post("/api/users/login-or-register", json={"phoneNumber": "12345"})
        assert response.status_code == 400
        assert response.json()["message"] == "Phone number must be exactly 10 digits"


class TestProfile:

    def test_update_profile_with_image(self, client, buyer, auth_headers, storage):
        response = client.put(
            f"/api/users/{buyer.id}",
            data={"firstName": "Asha", "lastName": "Kapoor"},
            files={"profileImage": ("me.png", b"\x89PNG", "image/png")},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "Asha Kapoor"
        assert data["profileImage"] == storage.uploads[0]["url"]
        assert storage.uploads[0]["folder"].startswith("users")

    def test_cannot_edit_someone_else(self, client, buyer, make_user, auth_headers):
        other = make_user(name="Rohan Das")
        response = client.put(f"/api/users/{other.id}", data={"firstName": "X"}, headers=auth_headers(buyer))
        assert response.status_code == 403

    def test_delete_account_removes_owned_rows(self, client, db, buyer, auth_headers, make_property):
        prop = make_property()
        headers = auth_headers(buyer)
        client.post("/api/home/property/favorite", json={"propertyId": prop.id}, headers=headers)
        client.post("/api/home/join-group", json={"propertyId": prop.id}, headers=headers)

        response = client.delete(f"/api/users/{buyer.id}", headers=headers)
        assert response.status_code == 200

        db.expire_all()
        assert db.get(User, buyer.id) is None
        assert db.query(UserPropertyActivity).count() == 0
        assert db.query(Lead).count() == 0

        # The token outlives the account but no longer resolves to a user
        assert client.get("/api/users/profile", headers=headers).status_code == 401
