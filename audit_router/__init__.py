"""compliance-audit-router: Splunk alerts to directory-resolved Jira tickets."""

__version__ = "0.1.0"
