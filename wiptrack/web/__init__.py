"""
HTTP surface: worklist API, session cookie and MCP endpoint.
"""
