"""RevEd Kids compliance core.

Audit trail, anonymization, retention policies and parental consent
for the children's learning platform.
"""

__version__ = "1.0.0"
