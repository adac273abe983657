"""
Workflow Guidance Server
Blueprint registry.
"""
