"""
Nebriix CRM Core Metadata
-------------------------
Project name and version shared by the HTTP surface and the health report.
"""

__project__ = "Nebriix CRM"
__version__ = "1.0.0"

CORE_METADATA = {
    "project": __project__,
    "version": __version__,
    "description": (
        "Client-side cache and mutation store for a real-estate CRM: "
        "properties, leads, deals, team accounts, audit trail and rewards."
    ),
}


def get_metadata() -> dict:
    """Return current system metadata as a dict."""
    return dict(CORE_METADATA)
