"""
Automation-facing endpoint that creates patients from external workflows.
"""
