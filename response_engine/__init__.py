"""
Incident Response Engine - workflow automation for security incidents.

  models     : pydantic models for workflows, incidents and executions
  services   : registry, trigger evaluation, step execution, escalation,
               metrics and the execution coordinator
  persistence: in-memory and JSON-file repositories
  api        : FastAPI routers mounted under /api/v1
"""

__version__ = "1.0.0"
