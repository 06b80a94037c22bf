"""
Template name constants.

Pure constants - no I/O or file system knowledge.
"""


class Template:
    """Template name constants. Use these instead of raw strings."""

    ENTITY_EXTRACTION = "entity_extraction"
    DISCHARGE_SUMMARY = "discharge_summary"
    DISCHARGE_EMAIL_HTML = "discharge_email.html"
    DISCHARGE_EMAIL_TEXT = "discharge_email.txt"
