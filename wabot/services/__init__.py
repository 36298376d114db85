"""
WhatsApp Command Bot - Services

Cross-cutting services: error categorization and retry handling.
"""
