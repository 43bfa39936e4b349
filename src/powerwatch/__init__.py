"""
PowerWatch - Power Platform assessment cache and API gateway.

Runs a Power Platform security assessment on a schedule, keeps the
latest result in memory and serves it over an authenticated JSON API.
"""

__version__ = "0.1.0"
