"""
Default catalogue of templates and workflow definitions for the four domains.
"""

from typing import Dict, Any
import logging

from .templates import AssignmentRule


logger = logging.getLogger("taskflow.seed")


# name, domain, description, sla hours, priority, department, steps
DEFAULT_TEMPLATES = [
    ("Qualify Lead", "sales", "Initial lead qualification and assessment", 24, "high", "Sales",
     ["Review lead source", "Contact customer", "Confirm requirements", "Assess feasibility",
      "Update lead status"]),
    ("Site Survey", "sales", "Physical site survey for service delivery", 48, "high", "Technicians R1",
     ["Schedule survey date", "Visit site", "Check fiber availability", "Take photos",
      "Submit survey report", "Update coverage map"]),
    ("Send Proposal", "sales", "Prepare and send pricing proposal to customer", 24, "high", "Sales",
     ["Calculate pricing", "Prepare proposal document", "Internal review", "Send to customer",
      "Log in CRM"]),
    ("Negotiate Deal", "sales", "Handle customer negotiations and close the deal", 72, "medium", "Sales",
     ["Review customer counter-offer", "Internal approval for discounts", "Final proposal",
      "Get signed contract", "Mark as Won/Lost"]),

    ("Create Billing", "circuits", "Set up billing for new circuit", 24, "high", "Finance",
     ["Create invoice in billing system", "Set MRC amount", "Set NRC amount",
      "Configure billing cycle", "Confirm with customer"]),
    ("Install Devices", "circuits", "Physical installation of network equipment", 48, "urgent", "Technicians R1",
     ["Check inventory for devices", "Schedule installation date", "Travel to site",
      "Install router/ONT", "Cable management", "Power up devices", "Take photo proof"]),
    ("Configure Circuit", "circuits", "Technical configuration of the circuit", 24, "high", "IT",
     ["Configure IP addressing", "Set up VLAN", "Configure routing", "Set bandwidth limits",
      "Enable monitoring"]),
    ("Test Circuit", "circuits", "End-to-end testing of the circuit", 24, "high", "IT",
     ["Ping test", "Speed test", "Latency test", "Failover test", "Customer confirmation",
      "Update MRTG"]),
    ("Activate Circuit", "circuits", "Final activation and handover to customer", 12, "urgent", "Coordination",
     ["Confirm all tests passed", "Notify customer", "Update circuit status to Active",
      "Send welcome email", "Close activation ticket"]),
    ("Stop Billing", "circuits", "Stop billing for deactivated circuit", 24, "high", "Finance",
     ["Calculate final invoice", "Stop recurring billing", "Issue final bill", "Confirm with customer"]),
    ("Dismantle Equipment", "circuits", "Remove equipment from customer site", 48, "medium", "Technicians R1",
     ["Schedule dismantle date", "Travel to site", "Remove router/ONT", "Remove cabling",
      "Take photo proof", "Transport to warehouse"]),
    ("Return Equipment", "circuits", "Process equipment return to stock", 24, "low", "Stock",
     ["Inspect equipment condition", "Update inventory", "Store in warehouse", "Update asset records"]),

    ("Design Campaign", "marketing", "Create marketing campaign materials", 48, "medium", "Marketing",
     ["Define target audience", "Create campaign brief", "Design visuals", "Write copy",
      "Internal review"]),
    ("Approve Campaign", "marketing", "Manager approval for campaign launch", 24, "high", "Management",
     ["Review campaign brief", "Check budget", "Approve/Reject", "Schedule launch date"]),
    ("Launch Campaign", "marketing", "Execute campaign launch across channels", 24, "urgent", "Marketing",
     ["Prepare all channels", "Send WhatsApp blasts", "Post on social media", "Start field teams",
      "Monitor initial response"]),
    ("Field Survey", "marketing", "On-ground survey at target location", 48, "medium", "Marketing",
     ["Travel to location", "Conduct door-to-door survey", "Collect contact details",
      "Record GPS coordinates", "Submit survey data", "Upload photos"]),
    ("Collect Results", "marketing", "Compile campaign results and create report", 72, "medium", "Marketing",
     ["Gather all survey data", "Count qualified leads", "Calculate conversion metrics",
      "Create report", "Feed leads to Sales"]),

    ("Process Iqama", "hr", "Handle iqama processing for new/renewal", 72, "high", "HR",
     ["Collect required documents", "Submit to GOSI", "Pay fees", "Receive iqama",
      "Update employee records", "Deliver to employee"]),
    ("Setup Insurance", "hr", "Medical insurance enrollment", 48, "high", "HR",
     ["Get employee details", "Submit to insurance provider", "Receive policy number",
      "Issue insurance card", "Update records"]),
    ("Open Bank Account", "hr", "Set up employee bank account for salary", 72, "medium", "HR",
     ["Collect required documents", "Submit bank application", "Follow up with bank",
      "Receive account details", "Update payroll records"]),
    ("Issue Equipment", "hr", "Provide work equipment to employee", 24, "medium", "Stock",
     ["Check equipment availability", "Prepare equipment list", "Get manager approval",
      "Issue from stock", "Employee signs receipt", "Update asset records"]),
    ("Employee Orientation", "hr", "New employee orientation and training", 48, "medium", "HR",
     ["Welcome and introduction", "Office tour", "Safety briefing", "System access setup",
      "Assign mentor", "First week plan"]),
    ("Process Vacation", "hr", "Handle vacation request", 48, "medium", "HR",
     ["Receive request", "Check leave balance", "Get manager approval", "Update leave records",
      "Notify employee", "Update calendar"]),
]

# name, domain, description, stage template names (first stage starts immediately)
DEFAULT_WORKFLOWS = [
    ("Sales Pipeline", "sales", "Full sales cycle from lead to close",
     ["Qualify Lead", "Site Survey", "Send Proposal", "Negotiate Deal"]),
    ("Circuit Activation", "circuits", "Activate a new circuit from billing to going live",
     ["Create Billing", "Install Devices", "Configure Circuit", "Test Circuit", "Activate Circuit"]),
    ("Circuit Deactivation", "circuits", "Deactivate and dismantle a circuit",
     ["Stop Billing", "Dismantle Equipment", "Return Equipment"]),
    ("Marketing Campaign", "marketing", "Full marketing campaign lifecycle",
     ["Design Campaign", "Approve Campaign", "Launch Campaign", "Field Survey", "Collect Results"]),
    ("Employee Onboarding", "hr", "Complete onboarding for new employee",
     ["Process Iqama", "Setup Insurance", "Open Bank Account", "Issue Equipment", "Employee Orientation"]),
]


def seed_defaults(system) -> Dict[str, Any]:
    """
    Install the default catalogue into an empty template table.

    Returns counts of what was created; does nothing when templates exist.
    """
    results = {"templates": 0, "workflows": 0}
    if system.storage.count(system.templates.table_name) > 0:
        logger.info("Templates already present, skipping seed")
        return results

    with system.storage.atomic():
        template_ids = {}
        for name, domain, description, sla, priority, department, steps in DEFAULT_TEMPLATES:
            template = system.templates.create_template(
                name=name,
                domain=domain,
                description=description,
                default_sla_hours=sla,
                priority=priority,
                assignment_rule=AssignmentRule.department(department),
                steps=steps
            )
            template_ids[name] = template.id
            results["templates"] += 1

        for name, domain, description, stage_names in DEFAULT_WORKFLOWS:
            stages = [
                {"order": i + 1, "template_id": template_ids[stage_name], "wait_for_previous": i > 0}
                for i, stage_name in enumerate(stage_names)
            ]
            system.workflow_engine.create_definition(
                name=name,
                domain=domain,
                description=description,
                stages=stages,
                created_by="seed"
            )
            results["workflows"] += 1

    logger.info("Seeded %d templates and %d workflows", results["templates"], results["workflows"])
    return results
