"""
Email, notification and background services
"""
