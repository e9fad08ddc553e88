"""Jinja2 templates for the customer notification e-mails."""
