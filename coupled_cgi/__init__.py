"""
CoupledCGI - CGI/1.1 gateway service.

Runs an external CGI program per HTTP request and relays its output.
"""

__version__ = "1.0.0"
