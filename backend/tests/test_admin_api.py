"""
Tests for staff sign-in, roles, team accounts, listing management and dashboards.
"""

import json

from khareedo.models.developer import Developer
from khareedo.models.lead import Lead
from khareedo.models.property import Property
from khareedo.models.user import Role, User


CONFIGURATIONS = json.dumps([
    {"unitType": "2 BHK", "subConfigurations": [
        {"carpetArea": "950 sqft", "price": "45 Lakh", "availabilityStatus": "Available"},
        {"carpetArea": "1100 sqft", "price": "52 Lakh", "availabilityStatus": "Reserved"},
    ]},
    {"unitType": "3 BHK", "carpetArea": "1400 sqft", "price": "80 Lakh"},
])


class TestStaffAuth:

    def test_admin_login(self, client, super_admin):
        response = client.post("/api/admin/admin_login",
                               json={"email": "root@acme-realty.in", "password": "Admin@123"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token"]
        assert data["user"]["role"]["name"] == "Super Admin"
        assert set(data["permissions"]) >= {"property", "developer", "crm", "team"}

    def test_wrong_password(self, client, super_admin):
        response = client.post("/api/admin/admin_login",
                               json={"email": "root@acme-realty.in", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid email or password"}

    def test_buyer_cannot_sign_in_as_staff(self, client, make_user):
        make_user(email="buyer@acme-realty.in", password="secret123")
        response = client.post("/api/admin/admin_login",
                               json={"email": "buyer@acme-realty.in", "password": "secret123"})
        assert response.status_code == 403

    def test_buyer_token_is_rejected_on_admin_routes(self, client, buyer, auth_headers):
        for path in ("/api/admin/admin_dashboard", "/api/admin/lead_list", "/api/admin/get_role"):
            response = client.get(path, headers=auth_headers(buyer))
            assert response.status_code == 403, path

    def test_super_admin_register_closes_after_first(self, client):
        body = {"name": "First Admin", "email": "first@acme-realty.in", "password": "Secret@1"}
        assert client.post("/api/admin/superadmin/register", json=body).status_code == 200

        second = client.post("/api/admin/superadmin/register",
                             json={**body, "email": "second@acme-realty.in"})
        assert second.status_code == 400
        assert second.json()["message"] == "A Super Admin already exists"

    def test_change_password(self, client, super_admin, auth_headers):
        headers = auth_headers(super_admin)
        bad = client.put("/api/admin/change_password", headers=headers,
                         json={"oldPassword": "wrong", "newPassword": "Fresh@456"})
        assert bad.json()["message"] == "Old password is incorrect"

        good = client.put("/api/admin/change_password", headers=headers,
                          json={"oldPassword": "Admin@123", "newPassword": "Fresh@456"})
        assert good.status_code == 200
        login = client.post("/api/admin/admin_login",
                            json={"email": "root@acme-realty.in", "password": "Fresh@456"})
        assert login.status_code == 200


class TestRolesAndTeam:

    def test_duplicate_role(self, client, super_admin, auth_headers):
        response = client.post("/api/admin/add_role", json={"name": "agent"}, headers=auth_headers(super_admin))
        assert response.status_code == 400
        assert response.json()["message"] == "Role already exists"

    def test_role_in_use_cannot_be_deleted(self, client, db, super_admin, agent, auth_headers):
        role = db.query(Role).filter_by(name="Agent").one()
        response = client.delete(f"/api/admin/delete_role/{role.id}", headers=auth_headers(super_admin))
        assert response.status_code == 400

    def test_create_team_user_sends_credentials(self, client, db, super_admin, auth_headers, sms):
        role = db.query(Role).filter_by(name="Agent").one()
        response = client.post("/api/admin/create_user", headers=auth_headers(super_admin), json={
            "name": "Meera Iyer", "email": "Meera@Acme-Realty.in", "phoneNumber": "9988776655", "role": role.id,
        })
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "meera@acme-realty.in"
        assert data["credentialsSent"] is True
        assert "meera@acme-realty.in" in sms.sent[0]["body"]

    def test_personal_email_is_rejected(self, client, db, super_admin, auth_headers):
        role = db.query(Role).filter_by(name="Agent").one()
        response = client.post("/api/admin/create_user", headers=auth_headers(super_admin), json={
            "name": "Meera Iyer", "email": "meera@gmail.com", "phoneNumber": "9988776655", "role": role.id,
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Personal email addresses are not allowed. Please use a company email"
        assert db.query(User).filter_by(email="meera@gmail.com").count() == 0

    def test_rm_cannot_be_deleted_while_assigned(self, client, super_admin, project_manager, auth_headers,
                                                 make_property):
        make_property(relationship_manager_id=project_manager.id)
        response = client.delete(f"/api/admin/delete_user/{project_manager.id}", headers=auth_headers(super_admin))
        assert response.status_code == 400

    def test_cannot_delete_self(self, client, super_admin, auth_headers):
        response = client.delete(f"/api/admin/delete_user/{super_admin.id}", headers=auth_headers(super_admin))
        assert response.json()["message"] == "You cannot delete your own account"


class TestListings:

    def _form(self, developer, project_manager, **overrides):
        form = {
            "projectName": "Riverside Residency",
            "developer": developer.id,
            "location": "Kharadi, Pune, Maharashtra",
            "developerPrice": "50 Lakh",
            "offerPrice": "40 Lakh",
            "possessionStatus": "Under Construction",
            "relationshipManager": project_manager.id,
            "minGroupMembers": "5",
            "configurations": CONFIGURATIONS,
            "amenities": '["Gym", "Pool"]',
            "connectivity": "{broken",
        }
        form.update(overrides)
        return form

    def test_create_property(self, client, db, super_admin, developer, project_manager, agent,
                             auth_headers, storage):
        response = client.post(
            "/api/admin/create_property",
            headers=auth_headers(super_admin),
            data=self._form(developer, project_manager, leadDistributionAgents=json.dumps([agent.id])),
            files=[
                ("images", ("front.jpg", b"front", "image/jpeg")),
                ("images", ("lobby.jpg", b"lobby", "image/jpeg")),
                ("layout_2BHK_950", ("plan.png", b"plan", "image/png")),
            ],
        )
        assert response.status_code == 200, response.json()
        data = response.json()["data"]

        assert data["developerPrice"] == 5_000_000
        assert data["offerPrice"] == 4_000_000
        assert data["discount"]["percentage"] == "20.00%"
        assert data["cachedDiscountPercentage"] == "20.00%"
        assert data["availableUnits"] == 2
        assert data["amenities"] == ["Gym", "Pool"]
        assert data["connectivity"]["schools"] == []
        assert data["leadDistributionAgents"] == [agent.id]
        assert data["coverImage"].endswith("front.jpg")
        assert data["configurations"][0]["subConfigurations"][0]["layoutPlanImages"][0].endswith("plan.png")
        assert data["configurations"][1]["subConfigurations"][0]["price"] == 8_000_000

        prop = db.get(Property, data["_id"])
        assert prop.project_id.startswith("RIVE-")
        assert len(storage.uploads) == 3

        detail = client.get(f"/api/home/getPropertyById/{prop.id}").json()["data"]
        assert detail["discount"] == {"amount": 1_000_000, "percentage": "20.00%", "formattedAmount": "10.00 Lakh"}

    def test_create_property_requires_fields(self, client, super_admin, auth_headers):
        response = client.post("/api/admin/create_property", headers=auth_headers(super_admin),
                               data={"projectName": "Half Done"})
        assert response.status_code == 400
        assert response.json()["message"].startswith("Developer, Location")

    def test_rm_must_be_project_manager(self, client, super_admin, developer, agent, auth_headers):
        response = client.post("/api/admin/create_property", headers=auth_headers(super_admin),
                               data=self._form(developer, agent))
        assert response.status_code == 400
        assert response.json()["message"] == "Relationship manager must have the 'Project Manager' role"

    def test_price_update_recaches_discount(self, client, db, super_admin, auth_headers, make_property):
        prop = make_property(discount_percentage="20.00%")
        response = client.put(f"/api/admin/update_property/{prop.id}", headers=auth_headers(super_admin),
                              data={"offerPrice": "45 Lakh"})
        assert response.status_code == 200
        assert response.json()["data"]["cachedDiscountPercentage"] == "10.00%"
        assert response.json()["data"]["discount"]["amount"] == 500_000

    def test_delete_property_unlists_and_closes_leads(self, client, db, super_admin, buyer, auth_headers,
                                                      make_property):
        prop = make_property()
        client.post("/api/home/join-group", json={"propertyId": prop.id}, headers=auth_headers(buyer))

        response = client.delete(f"/api/admin/delete_property/{prop.id}", headers=auth_headers(super_admin))
        assert response.status_code == 200

        db.expire_all()
        assert db.get(Property, prop.id).is_status is False
        assert db.query(Lead).filter_by(property_id=prop.id, is_status=True).count() == 0
        assert client.get(f"/api/home/getPropertyById/{prop.id}").status_code == 404

    def test_create_developer(self, client, super_admin, auth_headers, storage):
        response = client.post(
            "/api/admin/create_developer",
            headers=auth_headers(super_admin),
            data={
                "developerName": "Horizon Infra",
                "city": "Mumbai",
                "sourcingManager": json.dumps({"name": "Sunil", "mobile": "9811111111"}),
            },
            files={"logo": ("logo.png", b"logo", "image/png")},
        )
        assert response.status_code == 200, response.json()
        assert storage.uploads[0]["folder"] == "developers/logos"

    def test_developer_without_sourcing_manager(self, client, super_admin, auth_headers):
        response = client.post(
            "/api/admin/create_developer",
            headers=auth_headers(super_admin),
            data={"developerName": "Horizon Infra", "city": "Mumbai", "sourcingManager": '{"name": "Sunil"}'},
            files={"logo": ("logo.png", b"logo", "image/png")},
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Sourcing manager name and mobile are required"

    def test_developer_in_use_cannot_be_deleted(self, client, db, super_admin, developer, auth_headers,
                                                make_property):
        make_property()
        response = client.delete(f"/api/admin/delete_developer/{developer.id}", headers=auth_headers(super_admin))
        assert response.status_code == 400
        assert db.get(Developer, developer.id) is not None


class TestDashboards:

    def test_admin_dashboard_overview(self, client, super_admin, buyer, auth_headers, make_property):
        prop = make_property()
        client.post("/api/home/join-group", json={"propertyId": prop.id}, headers=auth_headers(buyer))

        response = client.get("/api/admin/admin_dashboard", headers=auth_headers(super_admin))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["overview"]["totalDevelopers"] == 1
        assert data["overview"]["liveProjects"] == 1
        assert data["overview"]["totalLeads"] == 1
        assert data["recentLeads"][0]["amount"] == "₹ 50.00 Lac"
        assert data["topPerformingProjects"][0]["groupBuy"]["joinedCount"] == 1

    def test_crm_dashboard_scoped_to_manager(self, client, project_manager, buyer, auth_headers, make_property):
        prop = make_property(relationship_manager_id=project_manager.id)
        make_property(project_name="Elsewhere")
        client.post("/api/home/join-group", json={"propertyId": prop.id}, headers=auth_headers(buyer))

        response = client.get("/api/admin/crm_dashboard", params={"dateRange": "past_7_days"},
                              headers=auth_headers(project_manager))
        assert response.status_code == 200
        body = response.json()
        assert body["data"]["kpis"]["leadsReceived"] == 1
        assert body["data"]["leads"][0]["projectName"] == "Green Meadows"
        assert body["pagination"]["total"] == 1

    def test_crm_dashboard_without_properties(self, client, agent, auth_headers):
        body = client.get("/api/admin/crm_dashboard", headers=auth_headers(agent)).json()
        assert body["data"]["kpis"]["responseTime"] == "0H"
        assert body["data"]["leads"] == []

    def test_crm_dashboard_rejects_unknown_range(self, client, agent, auth_headers):
        response = client.get("/api/admin/crm_dashboard", params={"dateRange": "last_year"},
                              headers=auth_headers(agent))
        assert response.status_code == 400
