"""Built-in response workflows seeded at startup (``SEED_DEFAULT_WORKFLOWS``).

Timeouts are in seconds; the estimated durations are minutes.
"""

from __future__ import annotations

from typing import Any, Dict, List

from response_engine.models.workflow import Workflow

MALWARE_RESPONSE: Dict[str, Any] = {
    "id": "malware_response",
    "name": "Malware Incident Response",
    "description": "Automated response workflow for malware detection",
    "trigger_conditions": [
        {"type": "category", "operator": "equals", "value": "malware", "weight": 1.0},
        {"type": "severity", "operator": "greater_than", "value": "medium", "weight": 0.7},
    ],
    "steps": [
        {
            "id": "isolate_host",
            "name": "Isolate Affected Host",
            "type": "containment",
            "action": "network_isolation",
            "parameters": {"isolation_type": "network", "preserve_evidence": True},
            "timeout": 5 * 60,
            "retry_count": 2,
            "on_failure": "escalate",
            "assigned_role": "security_analyst",
            "phase": "containment",
        },
        {
            "id": "collect_artifacts",
            "name": "Collect Forensic Artifacts",
            "type": "investigation",
            "action": "artifact_collection",
            "parameters": {"artifacts": ["memory_dump", "disk_image", "network_logs"]},
            "timeout": 30 * 60,
            "retry_count": 1,
            "on_failure": "continue",
            "assigned_role": "forensic_analyst",
        },
        {
            "id": "malware_analysis",
            "name": "Analyze Malware Sample",
            "type": "investigation",
            "action": "malware_sandbox_analysis",
            "parameters": {"sandbox_type": "automated", "timeout": 15},
            "timeout": 20 * 60,
            "retry_count": 1,
            "on_failure": "continue",
            "assigned_role": "malware_analyst",
        },
        {
            "id": "eradicate_malware",
            "name": "Remove Malware",
            "type": "eradication",
            "action": "malware_removal",
            "parameters": {"method": "automated_scan", "quarantine": True},
            "timeout": 15 * 60,
            "retry_count": 2,
            "on_failure": "escalate",
            "requires_approval": True,
            "assigned_role": "security_engineer",
        },
        {
            "id": "restore_systems",
            "name": "Restore Normal Operations",
            "type": "recovery",
            "action": "system_restoration",
            "parameters": {"validation_required": True, "monitoring_period": 24},
            "timeout": 30 * 60,
            "retry_count": 1,
            "on_failure": "escalate",
            "requires_approval": True,
            "assigned_role": "system_administrator",
            "phase": "recovery",
        },
    ],
    "priority": "high",
    "estimated_duration": 60,
    "success_criteria": ["Host isolated", "Malware removed", "Systems restored and validated"],
}

PHISHING_RESPONSE: Dict[str, Any] = {
    "id": "phishing_response",
    "name": "Phishing Incident Response",
    "description": "Automated response workflow for phishing attacks",
    "trigger_conditions": [
        {"type": "category", "operator": "equals", "value": "phishing", "weight": 1.0},
        {"type": "keyword", "operator": "contains", "value": "email", "weight": 0.5},
    ],
    "steps": [
        {
            "id": "block_sender",
            "name": "Block Malicious Sender",
            "type": "containment",
            "action": "email_block",
            "parameters": {"block_type": "sender_domain", "scope": "organization"},
            "timeout": 2 * 60,
            "retry_count": 2,
            "on_failure": "continue",
            "assigned_role": "security_analyst",
            "phase": "containment",
        },
        {
            "id": "quarantine_emails",
            "name": "Quarantine Similar Emails",
            "type": "containment",
            "action": "email_quarantine",
            "parameters": {"search_criteria": "sender_similarity", "time_range": 24},
            "timeout": 5 * 60,
            "retry_count": 1,
            "on_failure": "continue",
            "assigned_role": "email_administrator",
            "phase": "containment",
        },
        {
            "id": "user_notification",
            "name": "Notify Affected Users",
            "type": "notification",
            "action": "user_awareness",
            "parameters": {"message_type": "phishing_alert", "delivery_method": "email"},
            "timeout": 10 * 60,
            "retry_count": 1,
            "on_failure": "continue",
            "assigned_role": "communication_team",
        },
    ],
    "priority": "medium",
    "estimated_duration": 60,
    "success_criteria": ["Sender blocked", "Similar emails quarantined", "Users notified"],
}


def default_workflows() -> List[Workflow]:
    return [Workflow.model_validate(doc) for doc in (MALWARE_RESPONSE, PHISHING_RESPONSE)]
