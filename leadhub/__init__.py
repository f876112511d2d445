"""LeadHub: webhook delivery and lead-assignment notifications for a CRM."""

__version__ = "1.0.0"
