"""
Patient board: records, per-session state cache, email dispatch and routes.
"""
