"""
Core logic package.

CGI environment construction, output stream parsing and shared helpers.
"""
