"""Orchestration engine: context, plans, errors and the step loop."""
