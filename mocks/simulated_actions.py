"""Simulated response actions for local development and testing.

None of these touch a real system: they return plausible but entirely
fictional outputs (hosts, addresses, counts) so that the catalog workflows
can be exercised end-to-end without EDR, mail or sandbox integrations.
"""

from __future__ import annotations

import random
import time
from typing import Any, Dict

from response_engine.models.collaborators import StepContext
from response_engine.services.actions import InMemoryActionRegistry


async def network_isolation(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Host isolated from network",
        "affected_hosts": 1,
        "isolation_type": parameters.get("isolation_type", "network"),
    }


async def artifact_collection(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Forensic artifacts collected",
        "artifacts": parameters.get("artifacts", []),
        "evidence_id": f"evidence_{int(time.time() * 1000)}",
    }


async def malware_sandbox_analysis(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Malware analysis completed",
        "threat_level": "high",
        "family": "TrojanDropper",
        "iocs": ["192.0.2.100", "malicious.example.com"],
    }


async def malware_removal(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Malware removed successfully",
        "quarantined_files": 5,
        "clean_status": "verified",
    }


async def system_restoration(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Systems restored to normal operation",
        "restored_services": ["web_server", "database", "email"],
        "validation_passed": True,
    }


async def email_block(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Sender blocked",
        "blocked_addresses": ["attacker@malicious.example.com"],
        "scope": parameters.get("scope"),
    }


async def email_quarantine(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "Emails quarantined",
        "quarantined_count": random.randint(1, 10),
        "time_range": parameters.get("time_range"),
    }


async def user_awareness(parameters: Dict[str, Any], context: StepContext) -> dict:
    return {
        "action": "User notification sent",
        "recipients": random.randint(50, 149),
        "delivery_method": parameters.get("delivery_method"),
    }


SIMULATED_ACTIONS = {
    "network_isolation": network_isolation,
    "artifact_collection": artifact_collection,
    "malware_sandbox_analysis": malware_sandbox_analysis,
    "malware_removal": malware_removal,
    "system_restoration": system_restoration,
    "email_block": email_block,
    "email_quarantine": email_quarantine,
    "user_awareness": user_awareness,
}


def register_simulated_actions(registry: InMemoryActionRegistry) -> InMemoryActionRegistry:
    for action_id, handler in SIMULATED_ACTIONS.items():
        registry.register(action_id, handler)
    return registry
