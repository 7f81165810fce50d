"""
CSV exports of CRM data, built with pandas.
"""

import pandas as pd

from khareedo.models.lead import Lead, LeadActivity
from khareedo.services.leads import format_phone, status_label

LEAD_COLUMNS = [
    "Lead ID", "Buyer Name", "Buyer Email", "Buyer Phone", "Project Name", "Project ID",
    "Location", "Status", "Visit Status", "Source", "Remark", "RM Email", "RM Phone",
    "Visit Date", "Visit Time", "Schedule Date", "Created At",
]

ACTIVITY_COLUMNS = ["Activity Date", "Activity Type", "Performed By", "Description", "Next Follow Up"]


def _stamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def lead_row(lead: Lead) -> dict:
    buyer = lead.user
    prop = lead.property
    return {
        "Lead ID": lead.id,
        "Buyer Name": buyer.name if buyer else "",
        "Buyer Email": buyer.email if buyer else "",
        "Buyer Phone": format_phone(buyer.phone_number, buyer.country_code) if buyer else "",
        "Project Name": prop.project_name if prop else "",
        "Project ID": prop.project_id if prop else "",
        "Location": prop.location if prop else "",
        "Status": status_label(lead.status),
        "Visit Status": lead.visit_status or "",
        "Source": lead.source or "",
        "Remark": lead.remark or "",
        "RM Email": lead.rm_email or "",
        "RM Phone": lead.rm_phone or "",
        "Visit Date": _stamp(lead.visit_date),
        "Visit Time": lead.visit_time or "",
        "Schedule Date": _stamp(lead.schedule_date),
        "Created At": _stamp(lead.created_at),
    }


def leads_csv(leads: list[Lead]) -> str:
    df = pd.DataFrame([lead_row(lead) for lead in leads], columns=LEAD_COLUMNS)
    return df.to_csv(index=False)


def lead_detail_csv(lead: Lead, activities: list[LeadActivity]) -> str:
    """One lead's fields followed by its activity timeline."""
    summary = pd.DataFrame(
        [{"Field": key, "Value": value} for key, value in lead_row(lead).items()],
        columns=["Field", "Value"],
    )
    timeline = pd.DataFrame(
        [
            {
                "Activity Date": _stamp(a.activity_date),
                "Activity Type": a.activity_type,
                "Performed By": a.performed_by_name or "",
                "Description": a.description or "",
                "Next Follow Up": _stamp(a.next_follow_up_date),
            }
            for a in activities
        ],
        columns=ACTIVITY_COLUMNS,
    )
    return summary.to_csv(index=False) + "\n" + timeline.to_csv(index=False)
