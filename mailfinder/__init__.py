"""
mailfinder: multi-strategy contact email discovery for websites.
"""

__version__ = "0.1.0"
