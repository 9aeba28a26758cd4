"""app.integrations — Delivery-pipeline gateway modules.

All outbound HTTP calls to the systems that own linked artifacts must go
through a gateway in this package, never via bare `requests` calls in
services or blueprints.  Every call is:
  - Authenticated (credential injected by the gateway)
  - Retried with backoff
  - Circuit-broken per upstream system

Current gateways (artifact_gateway):
  IssueTrackerGateway   — Jira REST API v2 (stories, tasks)
  SourceControlGateway  — GitHub REST API (commits)
  BuildServerGateway    — Jenkins JSON API (deployments, test cases and results)
"""
