#!/usr/bin/env python3
"""
Incident Response Engine: command-line entry point.

Runs an incident through trigger evaluation and the best-matching workflow
using the simulated action handlers, or serves the HTTP API.

Usage:
    python main.py --demo
    python main.py --incident '{"id":"INC-001","category":"malware","severity":"high",...}'
    python main.py --serve --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from response_engine.engine import build_engine
from response_engine.models.incident import Incident
from response_engine.utils.config import load_config
from response_engine.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

SAMPLE_INCIDENT = {
    "id": "INC-2024-001",
    "category": "malware",
    "severity": "high",
    "description": "EDR flagged a dropper beaconing to a known C2 host on WORKSTATION-42",
    "source": "edr",
    "metadata": {
        "affected_host": "WORKSTATION-42",
        "indicators": [
            {"type": "ip", "value": "192.0.2.100"},
            {"type": "domain", "value": "malicious.example.com"},
        ],
    },
}


async def run_incident(incident: Incident, auto_approve: bool, backoff: float) -> dict:
    """Evaluate triggers, run the best workflow to completion and return the execution."""
    config = load_config(retry_backoff_seconds=backoff)
    engine = build_engine(config)
    try:
        execution = await engine.coordinator.handle_incident(incident, actor_id="cli")
        if execution is None:
            return {"incident_id": incident.id, "status": "no_workflow_triggered"}

        if auto_approve:
            workflow = engine.registry.get(execution.workflow_id)
            for step in workflow.steps:
                if step.requires_approval:
                    # Recorded ahead of time; consumed when the step starts waiting
                    engine.coordinator.approve(execution.id, step.id, "cli")

        final = await engine.coordinator.wait(execution.id)
        return final.model_dump(mode="json")
    finally:
        await engine.close()


def serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("response_engine.main:app", host=host, port=port)


def main() -> int:
    parser = argparse.ArgumentParser(description="Incident Response Engine")
    parser.add_argument("--incident", metavar="JSON", help="Incident JSON to respond to")
    parser.add_argument("--demo", action="store_true", help="Run with a sample malware incident")
    parser.add_argument("--serve", action="store_true", help="Start the HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--no-approve",
        action="store_true",
        help="Do not auto-approve steps that require approval (they will time out)",
    )
    parser.add_argument(
        "--backoff", type=float, default=0.1, help="Seconds between step retry attempts"
    )
    args = parser.parse_args()

    if args.serve:
        serve(args.host, args.port)
        return 0

    configure_logging(log_level=load_config().log_level)

    if args.demo:
        payload = SAMPLE_INCIDENT
    elif args.incident:
        payload = json.loads(args.incident)
    else:
        logger.info("reading_incident_from_stdin")
        payload = json.load(sys.stdin)

    incident = Incident.model_validate(payload)
    result = asyncio.run(run_incident(incident, not args.no_approve, args.backoff))
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") in ("completed", "no_workflow_triggered") else 1


if __name__ == "__main__":
    sys.exit(main())
