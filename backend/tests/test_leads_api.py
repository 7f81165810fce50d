"""
Tests for the CRM lead workbench, staff notifications and the buyer dashboard.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from khareedo.core.database import utcnow
from khareedo.models.lead import ActivityType, Lead, LeadActivity, Notification
from khareedo.services import leads, notifications


@pytest.fixture
def joined_lead(client, db, buyer, project_manager, agent, auth_headers, make_property):
    """A buyer lead on a property managed by ``project_manager`` with ``agent`` assigned."""
    prop = make_property(relationship_manager_id=project_manager.id, lead_distribution_agents=[agent.id])
    client.post("/api/home/join-group", json={"propertyId": prop.id}, headers=auth_headers(buyer))
    return db.query(Lead).filter_by(user_id=buyer.id, property_id=prop.id).one()


class TestLeadList:

    def test_manager_sees_own_leads(self, client, project_manager, joined_lead, auth_headers):
        body = client.get("/api/admin/lead_list", headers=auth_headers(project_manager)).json()
        assert [lead["_id"] for lead in body["data"]] == [joined_lead.id]
        assert body["data"][0]["status"] == "lead_received"

    def test_unassigned_agent_sees_nothing(self, client, make_user, joined_lead, auth_headers):
        outsider = make_user("Agent", name="Dev Patel")
        body = client.get("/api/admin/lead_list", headers=auth_headers(outsider)).json()
        assert body["data"] == []
        response = client.get(f"/api/admin/view_lead_list/{joined_lead.id}", headers=auth_headers(outsider))
        assert response.status_code == 404

    def test_search_and_status_filter(self, client, super_admin, joined_lead, auth_headers):
        headers = auth_headers(super_admin)
        assert len(client.get("/api/admin/lead_list", params={"search": "Asha"}, headers=headers).json()["data"]) == 1
        assert client.get("/api/admin/lead_list", params={"search": "Nobody"}, headers=headers).json()["data"] == []
        response = client.get("/api/admin/lead_list", params={"status": "bogus"}, headers=headers)
        assert response.status_code == 400

    def test_view_lead_includes_timeline(self, client, agent, joined_lead, auth_headers):
        data = client.get(f"/api/admin/view_lead_list/{joined_lead.id}", headers=auth_headers(agent)).json()["data"]
        assert data["relationshipManager"]["name"] == "Priya Shah"
        assert [a["activityType"] for a in data["activities"]] == ["join_group"]
        assert data["nextFollowUp"] is None


class TestLeadActions:

    def test_status_change_logs_and_notifies(self, client, db, project_manager, agent, joined_lead, auth_headers):
        response = client.put(f"/api/admin/update_lead_status/{joined_lead.id}", headers=auth_headers(agent),
                              json={"status": "interested", "remark": "Wants a corner flat"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["lead"]["status"] == "interested"
        assert data["activity"]["oldStatus"] == "lead_received"
        assert data["activity"]["newStatus"] == "interested"
        assert data["notificationsSent"] == 2

        notes = db.query(Notification).filter_by(notification_type=ActivityType.STATUS_UPDATE.value).all()
        assert {n.user_id for n in notes} == {project_manager.id, agent.id}

    def test_any_status_may_follow_any_other(self, client, super_admin, joined_lead, auth_headers):
        headers = auth_headers(super_admin)
        for status in ("deal_closed", "pending", "site_visit_confirmed"):
            response = client.put(f"/api/admin/update_lead_status/{joined_lead.id}", headers=headers,
                                  json={"status": status})
            assert response.json()["data"]["lead"]["status"] == status

    def test_notification_failure_does_not_fail_status_change(self, client, db, monkeypatch, super_admin,
                                                               joined_lead, auth_headers):
        def broken(lead):
            raise OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))

        monkeypatch.setattr(notifications, "lead_recipients", broken)
        response = client.put(f"/api/admin/update_lead_status/{joined_lead.id}", headers=auth_headers(super_admin),
                              json={"status": "declined_interest"})
        assert response.status_code == 200
        assert response.json()["data"]["notificationsSent"] == 0

        db.expire_all()
        assert db.get(Lead, joined_lead.id).status == "declined_interest"
        assert db.query(LeadActivity).filter_by(activity_type="status_update").count() == 1

    def test_follow_up_must_be_in_future(self, client, agent, joined_lead, auth_headers):
        past = (utcnow() - timedelta(days=1)).isoformat()
        response = client.post(f"/api/admin/schedule_follow_up/{joined_lead.id}", headers=auth_headers(agent),
                               json={"nextFollowUpDate": past})
        assert response.status_code == 400

        future = (utcnow() + timedelta(days=2)).isoformat()
        response = client.post(f"/api/admin/schedule_follow_up/{joined_lead.id}", headers=auth_headers(agent),
                               json={"nextFollowUpDate": future, "description": "Share brochure"})
        assert response.status_code == 200

        detail = client.get(f"/api/admin/view_lead_list/{joined_lead.id}", headers=auth_headers(agent)).json()
        assert detail["data"]["nextFollowUp"]["isOverdue"] is False
        assert detail["data"]["visitStatus"] == "follow_up"

    def test_follow_up_activity_needs_date(self, client, agent, joined_lead, auth_headers):
        response = client.post(f"/api/admin/lead_activity/{joined_lead.id}", headers=auth_headers(agent),
                               json={"activityType": "follow_up"})
        assert response.status_code == 400
        assert response.json()["message"] == "nextFollowUpDate is required for follow_up activity"

    def test_status_update_is_not_a_manual_activity(self, client, agent, joined_lead, auth_headers):
        response = client.post(f"/api/admin/lead_activity/{joined_lead.id}", headers=auth_headers(agent),
                               json={"activityType": "status_update"})
        assert response.status_code == 400

    def test_call_and_whatsapp_links(self, client, buyer, agent, joined_lead, auth_headers):
        call = client.post(f"/api/admin/call_now/{joined_lead.id}", headers=auth_headers(agent)).json()
        assert call["data"]["callLink"] == f"tel:+91{buyer.phone_number}"
        assert call["data"]["activity"]["activityType"] == "phone_call"

        chat = client.post(f"/api/admin/send_whatsapp/{joined_lead.id}", headers=auth_headers(agent),
                           json={"message": "Hello there"}).json()
        assert chat["data"]["whatsappLink"] == f"https://wa.me/91{buyer.phone_number}?text=Hello%20there"

    def test_delete_lead_is_soft(self, client, db, super_admin, joined_lead, auth_headers):
        response = client.delete(f"/api/admin/delete_lead_list/{joined_lead.id}", headers=auth_headers(super_admin))
        assert response.status_code == 200
        db.expire_all()
        assert db.get(Lead, joined_lead.id).is_status is False
        body = client.get("/api/admin/lead_list", headers=auth_headers(super_admin)).json()
        assert body["data"] == []


class TestExportsAndNotifications:

    def test_export_leads_csv(self, client, super_admin, joined_lead, auth_headers):
        response = client.get("/api/admin/export_leads_csv", headers=auth_headers(super_admin))
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        header, row = response.text.strip().splitlines()[:2]
        assert header.startswith("Lead ID,Buyer Name,Buyer Email")
        assert joined_lead.id in row
        assert "Green Meadows" in row

    def test_export_single_lead(self, client, super_admin, joined_lead, auth_headers):
        response = client.get(f"/api/admin/export_lead_csv/{joined_lead.id}", headers=auth_headers(super_admin))
        assert response.status_code == 200
        assert "join_group" in response.text

    def test_notifications_grouped_and_marked_read(self, client, project_manager, joined_lead, auth_headers):
        headers = auth_headers(project_manager)
        body = client.get("/api/admin/notifications", headers=headers).json()
        assert body["data"]["unreadCount"] == 1
        assert body["data"]["groups"][0]["label"] == "Today"
        assert body["data"]["groups"][0]["notifications"][0]["title"] == "Group Joined"

        marked = client.put("/api/admin/notifications/mark_all_read", headers=headers).json()
        assert marked["data"]["updated"] == 1
        assert client.get("/api/admin/notifications", headers=headers).json()["data"]["unreadCount"] == 0


class TestBuyerDashboard:

    def test_counts(self, client, buyer, auth_headers, make_property):
        prop = make_property()
        headers = auth_headers(buyer)
        client.post("/api/user-dashboard/property/view", json={"propertyId": prop.id}, headers=headers)
        client.post("/api/user-dashboard/property/favorite", json={"propertyId": prop.id}, headers=headers)

        data = client.get("/api/user-dashboard/dashboard", headers=headers).json()["data"]
        assert data == {"totalViewed": 1, "totalFavorited": 1, "totalVisited": 0}

    def test_visited_split_by_date(self, client, buyer, auth_headers, make_property):
        upcoming = make_property(project_name="Future Towers")
        past = make_property(project_name="Old Court")
        headers = auth_headers(buyer)
        client.post("/api/home/property/visit", headers=headers,
                    json={"propertyId": upcoming.id, "visitDate": (utcnow() + timedelta(days=3)).isoformat()})
        client.post("/api/home/property/visit", headers=headers,
                    json={"propertyId": past.id, "visitDate": (utcnow() - timedelta(days=3)).isoformat()})

        body = client.get("/api/user-dashboard/my-properties/visited", headers=headers).json()
        assert [v["property"]["projectName"] for v in body["data"]["upcoming"]] == ["Future Towers"]
        assert [v["property"]["projectName"] for v in body["data"]["completed"]] == ["Old Court"]
        assert body["pagination"]["upcoming"]["total"] == 1

    def test_update_visit_only_for_own_lead(self, client, make_user, auth_headers, joined_lead):
        stranger = make_user(name="Other Buyer")
        response = client.put(f"/api/user-dashboard/property/update_visit/{joined_lead.id}",
                              headers=auth_headers(stranger), json={"visitTime": "10:00 AM"})
        assert response.status_code == 403

    def test_contact_preferences_save_then_update(self, client, buyer, auth_headers):
        headers = auth_headers(buyer)
        first = client.post("/api/user-dashboard/contact_preferences", headers=headers, json={
            "preferredLocations": [{"name": "Baner", "latitude": 18.56, "longitude": 73.78}],
            "budgetMin": "40 Lakh",
            "budgetMax": "1 Cr",
        })
        assert first.json()["message"] == "Preferences Saved"
        assert first.json()["data"]["budgetMax"] == 10_000_000

        second = client.post("/api/user-dashboard/contact_preferences", headers=headers, json={"floorMin": 2})
        assert second.json()["message"] == "Preferences Updated"
        assert second.json()["data"]["budgetMin"] == 4_000_000

        stored = client.get("/api/user-dashboard/get_contact_preferences", headers=headers).json()["data"]
        assert stored["preferredLocations"][0]["name"] == "Baner"
        assert stored["floorMin"] == 2

    def test_contact_preferences_validation(self, client, buyer, auth_headers):
        headers = auth_headers(buyer)
        inverted = client.post("/api/user-dashboard/contact_preferences", headers=headers,
                               json={"budgetMin": "2 Cr", "budgetMax": "50 Lakh"})
        assert inverted.status_code == 400
        unknown = client.post("/api/user-dashboard/contact_preferences", headers=headers,
                              json={"favouriteColour": "blue"})
        assert unknown.status_code == 400

    def test_search_history_grouped_by_day(self, client, buyer, auth_headers, make_property):
        make_property()
        headers = auth_headers(buyer)
        client.get("/api/home/search-properties", params={"searchQuery": "Green"}, headers=headers)
        client.get("/api/home/search-properties", params={"searchQuery": "Green"}, headers=headers)
        client.get("/api/home/search-properties", params={"location": "Pune"}, headers=headers)

        data = client.get("/api/user-dashboard/get_search", headers=headers).json()["data"]
        assert list(data) == ["Today"]
        assert len(data["Today"]) == 2


class TestManagedProperties:

    def test_rm_and_agent_assignments(self, db, project_manager, agent, make_property):
        managed = make_property(project_name="Riverside", relationship_manager_id=project_manager.id)
        assigned = make_property(project_name="Hill Crest", lead_distribution_agents=[agent.id, project_manager.id])
        make_property(project_name="Elsewhere")

        assert set(leads.managed_property_ids(db, project_manager)) == {managed.id, assigned.id}
        assert leads.managed_property_ids(db, agent) == [assigned.id]
